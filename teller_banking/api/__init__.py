"""
Teller Banking API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import uvicorn

from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .users import router as users_router, protected_router
from ..config import get_config
from ..errors import BankingError, InternalError, InvalidArgument, http_status_for
from ..logging_config import get_logger, log_action


logger = get_logger("teller.api")


async def banking_error_handler(request: Request, exc: BankingError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error(f"Internal error on {request.method} {request.url.path}: {exc.message}",
                     exc_info=exc)
    return JSONResponse(status_code=http_status_for(exc), content=exc.to_payload())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({
        ".".join(str(part) for part in error.get("loc", ())[1:]) or "body"
        for error in exc.errors()
    })
    error = InvalidArgument(f"Invalid request: {', '.join(fields)}")
    return JSONResponse(status_code=http_status_for(error), content=error.to_payload())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_action(
        logger, "error", f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}",
        action="unhandled_error", extra={"error": str(exc)}
    )
    return JSONResponse(status_code=500, content=InternalError().to_payload())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    prefix = get_config().api_prefix

    app = FastAPI(
        title="Teller Banking API",
        description="Banking back-office: users, accounts and teller transactions",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_exception_handler(BankingError, banking_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Include routers
    app.include_router(users_router, prefix=f"{prefix}/auth", tags=["Auth"])
    app.include_router(protected_router, prefix=f"{prefix}/protected", tags=["Auth"])
    app.include_router(accounts_router, prefix=f"{prefix}/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix=f"{prefix}/transactions", tags=["Transactions"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "teller_banking_api",
            "version": "1.0.0"
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 5100, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "teller_banking.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
