"""
Best-effort billing ZIP enrichment through the payment processor's HTTP API.

Lookups run strictly one after another with a fixed pause between calls to
stay under the processor's rate limit. A failed lookup never drops a row:
the row keeps ``zip = None`` and the failure is reported separately.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .configuration import ZipApiConfig
from .errors import ConfigurationError, ZipLookupError
from .models import ZipEnrichmentResult, ZipLookupFailure

logger = logging.getLogger(__name__)


class ZipCodeClient:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_s: float = 10.0,
        zip_field: str = "zip",
        opener: Optional[Callable[..., Any]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.zip_field = zip_field
        self._open = opener or urllib.request.urlopen

    @classmethod
    def from_config(cls, config: ZipApiConfig) -> "ZipCodeClient":
        if not config.base_url:
            raise ConfigurationError("ZIP_API_BASE_URL is not configured.")
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            timeout_s=config.timeout_seconds,
            zip_field=config.zip_field,
        )

    def _headers(self) -> Dict[str, str]:
        h = {"Accept": "application/json"}
        if self.api_key:
            h["APIKEY"] = self.api_key
        return h

    def fetch_zip(self, transaction_id: str) -> str:
        url = f"{self.base_url}/txns/{urllib.parse.quote(str(transaction_id), safe='')}"
        req = urllib.request.Request(url, headers=self._headers(), method="GET")
        try:
            with self._open(req, timeout=self.timeout_s) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            raise ZipLookupError(transaction_id, f"HTTP {e.code} from ZIP API") from e
        except (urllib.error.URLError, OSError) as e:
            raise ZipLookupError(transaction_id, f"{type(e).__name__}: {e}") from e
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ZipLookupError(transaction_id, "ZIP API returned invalid JSON") from e

        zip_code = find_field(payload, self.zip_field)
        if zip_code in (None, ""):
            raise ZipLookupError(transaction_id, "No ZIP code in ZIP API response")
        return str(zip_code)


def find_field(payload: Any, field_name: str) -> Any:
    """Depth-first search for the first non-empty ``field_name`` value."""

    if isinstance(payload, dict):
        value = payload.get(field_name)
        if value not in (None, ""):
            return value
        children: Iterable[Any] = payload.values()
    elif isinstance(payload, list):
        children = payload
    else:
        return None

    for child in children:
        found = find_field(child, field_name)
        if found not in (None, ""):
            return found
    return None


def enrich_with_zip(
    rows: Iterable[Mapping[str, Any]],
    client: ZipCodeClient,
    delay_seconds: float = 0.5,
    transaction_key: str = "transaction_id",
    sleep: Callable[[float], None] = time.sleep,
) -> ZipEnrichmentResult:
    enriched: List[Dict[str, Any]] = []
    errors: List[ZipLookupFailure] = []
    called = False

    for row in rows:
        record = dict(row)
        record["zip"] = None
        enriched.append(record)

        transaction_id = record.get(transaction_key)
        if not transaction_id:
            errors.append(ZipLookupFailure(transaction_id=None, error="Row has no transaction id"))
            continue

        if called and delay_seconds > 0:
            sleep(delay_seconds)
        called = True

        try:
            record["zip"] = client.fetch_zip(str(transaction_id))
        except ZipLookupError as exc:
            logger.warning("ZIP lookup failed for transaction %s: %s", transaction_id, exc)
            errors.append(ZipLookupFailure(transaction_id=str(transaction_id), error=str(exc)))

    return ZipEnrichmentResult(rows=enriched, errors=errors)
