"""
Finance Ledger API Application Factory
"""

from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..exceptions import (
    LedgerError, DuplicateNumberError, NegativeBalanceViolation, LockTimeoutError,
    MissingAccountError, DocumentNotFoundError, OrganizationNotFoundError
)
from ..logging_config import get_logger
from .system import LedgerSystem, get_ledger_system
from .organizations import router as organizations_router
from .accounts import router as accounts_router
from .documents import router as documents_router
from .transactions import router as transactions_router


logger = get_logger("finance_ledger.api")

# Domain errors that are not plain validation failures
ERROR_STATUS_CODES = {
    NegativeBalanceViolation: 409,
    DuplicateNumberError: 409,
    LockTimeoutError: 503,
    MissingAccountError: 404,
    DocumentNotFoundError: 404,
    OrganizationNotFoundError: 404,
}


def _error_response(exc: Exception, status_code: int) -> JSONResponse:
    body = {"detail": str(exc), "error": type(exc).__name__}
    if getattr(exc, "retryable", False):
        body["retryable"] = True
    return JSONResponse(status_code=status_code, content=body)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Finance Ledger API",
        description="Document numbering and balance ledger for financial documents",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = 400
        for error_type, code in ERROR_STATUS_CODES.items():
            if isinstance(exc, error_type):
                status_code = code
                break
        if status_code >= 500 or getattr(exc, "fatal", False):
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error_response(exc, status_code)

    @app.exception_handler(ValueError)
    async def validation_error_handler(request: Request, exc: ValueError):
        return _error_response(exc, 400)

    # Include routers
    app.include_router(organizations_router, prefix="/organizations", tags=["Organizations"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(documents_router, prefix="/documents", tags=["Documents"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "finance_ledger_api",
            "version": __version__
        }

    @app.get("/audit/integrity")
    def verify_audit_integrity(system: LedgerSystem = Depends(get_ledger_system)):
        """Verify the audit hash chain"""
        return system.audit_trail.verify_integrity()

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Finance Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "organizations": "/organizations",
                "accounts": "/accounts",
                "documents": "/documents",
                "transactions": "/transactions",
                "audit": "/audit/integrity"
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "finance_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
