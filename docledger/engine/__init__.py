"""DocLedger Engine — Configuration, errors, structured logging, health."""

from docledger.engine.config import ServiceConfig, get_config, load_config  # noqa: F401
from docledger.engine.errors import DocLedgerError  # noqa: F401
from docledger.engine.health import HealthCheckService  # noqa: F401

__all__ = [
    "ServiceConfig",
    "get_config",
    "load_config",
    "DocLedgerError",
    "HealthCheckService",
]
