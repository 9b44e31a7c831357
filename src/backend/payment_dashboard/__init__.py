"""
Backend for the ticketing payment dashboard.

Staff search a host's payments by attendee name, build filtered queries from
the dashboard form, ask questions in plain English, enrich results with
billing ZIP codes and export or chart what they find. Every query runs on a
read-only connection to the ticketing database.
"""

from .charts import build_chart, select_chart_type  # noqa: F401
from .configuration import DashboardConfig, load_config  # noqa: F401
from .errors import (  # noqa: F401
    ConfigurationError,
    DashboardError,
    QueryValidationError,
    ZipLookupError,
)
from .models import (  # noqa: F401
    Attendee,
    BuiltQuery,
    ChartData,
    ChartPoint,
    ChartSeries,
    FilterForm,
    Payment,
    PaymentMatch,
    PaymentSearchParams,
    SeatLookupResult,
    ZipEnrichmentResult,
    ZipLookupFailure,
)
from .postprocess import (  # noqa: F401
    DateBucket,
    bucket_counts,
    filter_by_date_bucket,
    normalize_rows,
    partition_by_date_bucket,
)
from .query_builder import build_filter_query, ensure_read_only_sql  # noqa: F401
from .repository import (  # noqa: F401
    PaymentRepository,
    SQLPaymentRepository,
    build_repository_from_env,
)
from .seat_lookup import SeatLookupService  # noqa: F401
from .zip_lookup import ZipCodeClient, enrich_with_zip  # noqa: F401
