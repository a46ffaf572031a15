"""Core package: provides models, database tables, settings, errors and shared utilities."""

from .db import get_engine, init_db  # noqa: F401
from .errors import ExternalServiceError, SettlementError, WorkflowInputError  # noqa: F401
from .models import JobStatus, LedgerEntry, LedgerKind, LedgerStatus, SwapJob  # noqa: F401
from .settings import Settings, get_settings  # noqa: F401
from .utils import get_logger  # noqa: F401
