"""Draft read-only SQL from a staff member's plain-English question."""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from langchain.chat_models import init_chat_model
from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field

from .configuration import LLMConfig, RetryConfig
from .errors import QueryValidationError
from .prompt import nl_to_sql_prompt, schema_summary
from .query_builder import DEFAULT_FORM_LIMIT, ensure_limit, ensure_read_only_sql

logger = logging.getLogger(__name__)

# Shared configurable model; the concrete model/temperature/key are bound per call.
configurable_model = init_chat_model(
    configurable_fields=("model", "temperature", "api_key"),
)


class SQLDraft(BaseModel):
    sql: str = Field(..., description="A single read-only PostgreSQL SELECT statement")
    explanation: str = Field("", description="One sentence describing what the query returns")


def get_api_key_for_model(model_name: str) -> Optional[str]:
    model_name = model_name.lower()
    if model_name.startswith("openai:"):
        return os.getenv("OPENAI_API_KEY")
    if model_name.startswith("anthropic:"):
        return os.getenv("ANTHROPIC_API_KEY")
    if model_name.startswith("deepseek:"):
        return os.getenv("DEEPSEEK_API_KEY")
    if model_name.startswith("google"):
        return os.getenv("GOOGLE_API_KEY")
    return None


class NaturalLanguageSQLTranslator:
    def __init__(
        self,
        llm: Optional[LLMConfig] = None,
        retry: Optional[RetryConfig] = None,
        model: Any = None,
        limit: int = DEFAULT_FORM_LIMIT,
    ) -> None:
        self.llm = llm or LLMConfig()
        self.retry = retry or RetryConfig()
        self.model = model if model is not None else configurable_model
        self.limit = limit

    async def translate(self, question: str, host_user_id: int) -> SQLDraft:
        question = (question or "").strip()
        if not question:
            raise QueryValidationError("Please enter a question")

        prompt = (
            nl_to_sql_prompt.replace("{schema}", schema_summary)
            .replace("{host_user_id}", str(int(host_user_id)))
            .replace("{limit}", str(self.limit))
            .replace("{question}", question)
        )
        model_config = {
            "model": self.llm.model,
            "temperature": self.llm.temperature,
            "api_key": get_api_key_for_model(self.llm.model),
        }
        model = (
            self.model
            .with_structured_output(SQLDraft)
            .with_retry(stop_after_attempt=self.retry.max_retries)
            .with_config(model_config)
        )

        draft = await model.ainvoke([HumanMessage(content=prompt)])
        logger.info("Drafted SQL for question %r", question)

        sql = ensure_limit(ensure_read_only_sql(draft.sql), self.limit)
        return SQLDraft(sql=sql, explanation=draft.explanation)
