from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, validator
from sqlalchemy.exc import SQLAlchemyError

from .charts import build_chart
from .configuration import DashboardConfig, load_config
from .errors import ConfigurationError, QueryValidationError
from .export import export_filename, rows_csv, seat_lookup_csv
from .models import FilterForm, PaymentSearchParams, SeatLookupResult, ZipLookupFailure
from .nl_sql import NaturalLanguageSQLTranslator
from .postprocess import bucket_counts, filter_by_date_bucket, normalize_rows, today_in
from .query_builder import build_filter_query
from .repository import PaymentRepository, build_repository_from_env
from .seat_lookup import SeatLookupService
from .zip_lookup import ZipCodeClient, enrich_with_zip

config = load_config()
logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Payment Dashboard API", version="0.1.0")


def get_config() -> DashboardConfig:
    return config


def get_repository(cfg: DashboardConfig = Depends(get_config)) -> PaymentRepository:
    repository = build_repository_from_env(cfg.database)
    if repository is None:
        raise ConfigurationError(
            "Database is not configured; set DATABASE_URL or DB_HOST/DB_DATABASE/DB_USER/DB_PASSWORD."
        )
    return repository


def get_translator(cfg: DashboardConfig = Depends(get_config)) -> NaturalLanguageSQLTranslator:
    return NaturalLanguageSQLTranslator(llm=cfg.llm, retry=cfg.retry)


def get_zip_client(cfg: DashboardConfig = Depends(get_config)) -> ZipCodeClient:
    return ZipCodeClient.from_config(cfg.zip_api)


@app.exception_handler(QueryValidationError)
async def _query_validation_handler(request: Request, exc: QueryValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def _configuration_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(SQLAlchemyError)
async def _database_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database query failed for %s", request.url.path)
    lines = str(getattr(exc, "orig", None) or exc).strip().splitlines()
    message = lines[0] if lines else type(exc).__name__
    return JSONResponse(status_code=500, content={"detail": f"Database query failed: {message}"})


def _resolve_host(host_user_id: Optional[int], cfg: DashboardConfig) -> int:
    resolved = host_user_id if host_user_id is not None else cfg.seat_lookup.default_host_user_id
    if resolved is None:
        raise HTTPException(status_code=400, detail="host_user_id is required.")
    return resolved


class SeatLookupRequest(BaseModel):
    search_query: str
    host_user_id: Optional[int] = None
    limit: Optional[int] = Field(None, ge=1, le=100)
    include_seats: Optional[bool] = None
    show_past: bool = False
    show_future: bool = False


class SeatLookupResponse(BaseModel):
    results: List[Dict[str, Any]]
    visible: List[Dict[str, Any]]
    counts: Dict[str, int]


class SeatLookupResultPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_name: str = Field("", alias="eventName")
    event_start_date: str = Field("", alias="eventStartDate")
    event_start_time: str = Field("", alias="eventStartTime")
    payment_id: int = Field(..., alias="paymentId")
    amount: float = 0.0
    payer_name: Optional[str] = Field(None, alias="payerName")
    seat_info: Optional[str] = Field(None, alias="seatInfo")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    event_date: Optional[date] = Field(None, alias="eventDate")


class SeatLookupExportRequest(BaseModel):
    results: List[SeatLookupResultPayload]
    show_past: bool = False
    show_future: bool = False


class PaymentSearchRequest(BaseModel):
    transaction_ids: List[str] = Field(default_factory=list)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    host_user_id: Optional[int] = None
    limit: Optional[int] = Field(100, ge=1, le=1000)
    offset: Optional[int] = Field(None, ge=0)

    @validator("date_to")
    def _validate_range(cls, date_to: Optional[date], values: Dict[str, Any]) -> Optional[date]:
        date_from = values.get("date_from")
        if date_from and date_to and date_to < date_from:
            raise ValueError("date_to must not be before date_from")
        return date_to


class FormQueryRequest(BaseModel):
    table: str = "payments"
    status: Optional[str] = None
    card_type: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    with_attendee_only: bool = False
    exclude_zero_amount: bool = False
    host_user_id: Optional[int] = None
    limit: Optional[int] = Field(None, ge=1, le=1000)


class QueryResponse(BaseModel):
    sql: Optional[str] = None
    explanation: Optional[str] = None
    rows: Optional[List[Dict[str, Any]]] = None
    row_count: int = 0


class ExecuteSQLRequest(BaseModel):
    sql: str = Field(..., min_length=1)


class NLToSQLRequest(BaseModel):
    question: str = Field(..., min_length=1)
    host_user_id: Optional[int] = None
    execute: bool = True


class FetchZipRequest(BaseModel):
    transaction_ids: List[str] = Field(..., min_length=1)
    host_user_id: Optional[int] = None


class FetchZipResponse(BaseModel):
    rows: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]


class ChartRequest(BaseModel):
    rows: List[Dict[str, Any]]
    chart_type: Optional[str] = None
    prompt: Optional[str] = None


class RowsExportRequest(BaseModel):
    rows: List[Dict[str, Any]]
    columns: Optional[List[str]] = None


def _query_response(rows: List[Dict[str, Any]], cfg: DashboardConfig, **extra: Any) -> QueryResponse:
    normalized = jsonable_encoder(normalize_rows(rows, cfg.seat_lookup.timezone))
    return QueryResponse(rows=normalized, row_count=len(normalized), **extra)


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/seat-lookup", response_model=SeatLookupResponse)
def seat_lookup_endpoint(
    request: SeatLookupRequest,
    cfg: DashboardConfig = Depends(get_config),
    repository: PaymentRepository = Depends(get_repository),
) -> SeatLookupResponse:
    host_user_id = _resolve_host(request.host_user_id, cfg)
    service = SeatLookupService(
        repository,
        timezone=cfg.seat_lookup.timezone,
        default_limit=cfg.seat_lookup.limit,
        include_seats=cfg.seat_lookup.include_seats,
    )
    results = service.search(
        request.search_query,
        host_user_id,
        limit=request.limit,
        include_seats=request.include_seats,
    )
    today = today_in(cfg.seat_lookup.timezone)
    visible = filter_by_date_bucket(results, today, show_past=request.show_past, show_future=request.show_future)
    return SeatLookupResponse(
        results=[result.as_dict() for result in results],
        visible=[result.as_dict() for result in visible],
        counts=bucket_counts(results, today),
    )


@app.post("/payments/search", response_model=QueryResponse)
def payment_search_endpoint(
    request: PaymentSearchRequest,
    cfg: DashboardConfig = Depends(get_config),
    repository: PaymentRepository = Depends(get_repository),
) -> QueryResponse:
    params = PaymentSearchParams(
        transaction_ids=tuple(request.transaction_ids),
        date_from=request.date_from,
        date_to=request.date_to,
        host_user_id=_resolve_host(request.host_user_id, cfg),
        limit=request.limit,
        offset=request.offset,
    )
    payments = repository.search_payments(params)
    return _query_response([payment.as_dict() for payment in payments], cfg)


@app.post("/query/form", response_model=QueryResponse)
def form_query_endpoint(
    request: FormQueryRequest,
    cfg: DashboardConfig = Depends(get_config),
    repository: PaymentRepository = Depends(get_repository),
) -> QueryResponse:
    form = FilterForm(**request.model_dump())
    built = build_filter_query(form)
    rows = repository.run_query(built)
    return _query_response(rows, cfg, sql=built.sql)


@app.post("/execute-sql", response_model=QueryResponse)
def execute_sql_endpoint(
    request: ExecuteSQLRequest,
    cfg: DashboardConfig = Depends(get_config),
    repository: PaymentRepository = Depends(get_repository),
) -> QueryResponse:
    rows = repository.execute_sql(request.sql)
    return _query_response(rows, cfg, sql=request.sql.strip())


@app.post("/nl-to-sql", response_model=QueryResponse)
async def nl_to_sql_endpoint(
    request: NLToSQLRequest,
    cfg: DashboardConfig = Depends(get_config),
    translator: NaturalLanguageSQLTranslator = Depends(get_translator),
    repository: PaymentRepository = Depends(get_repository),
) -> QueryResponse:
    host_user_id = _resolve_host(request.host_user_id, cfg)
    draft = await translator.translate(request.question, host_user_id)
    if not request.execute:
        return QueryResponse(sql=draft.sql, explanation=draft.explanation)
    rows = await run_in_threadpool(repository.execute_sql, draft.sql)
    return _query_response(rows, cfg, sql=draft.sql, explanation=draft.explanation)


@app.post("/fetch-zip", response_model=FetchZipResponse)
def fetch_zip_endpoint(
    request: FetchZipRequest,
    cfg: DashboardConfig = Depends(get_config),
    repository: PaymentRepository = Depends(get_repository),
    client: ZipCodeClient = Depends(get_zip_client),
) -> FetchZipResponse:
    host_user_id = _resolve_host(request.host_user_id, cfg)
    requested = list(dict.fromkeys(request.transaction_ids))
    payments = repository.search_payments(
        PaymentSearchParams(transaction_ids=tuple(requested), host_user_id=host_user_id)
    )
    result = enrich_with_zip(
        [payment.as_dict() for payment in payments],
        client,
        delay_seconds=cfg.zip_api.delay_seconds,
    )

    found = {payment.transaction_id for payment in payments}
    missing = [
        ZipLookupFailure(transaction_id=transaction_id, error="Payment not found for this host")
        for transaction_id in requested
        if transaction_id not in found
    ]
    errors = [failure.as_dict() for failure in list(result.errors) + missing]
    return FetchZipResponse(rows=jsonable_encoder(result.rows), errors=errors)


@app.post("/chart")
async def chart_endpoint(request: ChartRequest, cfg: DashboardConfig = Depends(get_config)) -> Dict[str, Any]:
    chart = build_chart(
        request.rows,
        chart_type=request.chart_type,
        prompt=request.prompt,
        timezone=cfg.seat_lookup.timezone,
    )
    return chart.as_dict()


@app.post("/export/seat-lookup")
async def export_seat_lookup_endpoint(
    request: SeatLookupExportRequest,
    cfg: DashboardConfig = Depends(get_config),
) -> Response:
    results = [
        SeatLookupResult(
            event_name=payload.event_name,
            event_start_date=payload.event_start_date,
            event_start_time=payload.event_start_time,
            payment_id=payload.payment_id,
            amount=payload.amount,
            payer_name=payload.payer_name or "",
            seat_info=payload.seat_info,
            transaction_id=payload.transaction_id,
            event_date=payload.event_date,
        )
        for payload in request.results
    ]
    today = today_in(cfg.seat_lookup.timezone)
    content = seat_lookup_csv(results, today, show_past=request.show_past, show_future=request.show_future)
    return _csv_response(content, export_filename("seat-lookup", today))


@app.post("/export/rows")
async def export_rows_endpoint(request: RowsExportRequest, cfg: DashboardConfig = Depends(get_config)) -> Response:
    today = today_in(cfg.seat_lookup.timezone)
    return _csv_response(rows_csv(request.rows, request.columns), export_filename("query-results", today))
