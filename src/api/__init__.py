"""knowchat API layer: routes, schemas, and middleware."""

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
    register_exception_handlers,
)
from src.api.routes import router
from src.api.schemas import (
    DocumentIngestRequest,
    DocumentIngestResponse,
    ErrorResponse,
    HealthResponse,
    QueryRequest,
    ReembedRequest,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "register_exception_handlers",
    "router",
    "DocumentIngestRequest",
    "DocumentIngestResponse",
    "ErrorResponse",
    "HealthResponse",
    "QueryRequest",
    "ReembedRequest",
]
