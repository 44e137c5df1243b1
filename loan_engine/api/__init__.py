"""
Loan Engine API Application Factory
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .calculators import router as calculators_router
from .loans import router as loans_router, portfolio_router
from .schemas import ErrorResponse
from .. import __version__
from ..config import get_config
from ..exceptions import (
    ConflictError, InvalidArgumentError, InvalidStateError, LoanEngineError,
    NotFoundError, UnavailableError
)


logger = logging.getLogger("loan_engine.api")

# Most specific first: NotFoundError is an InvalidStateError
ERROR_STATUS_CODES = (
    (InvalidArgumentError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (UnavailableError, 503),
)


def status_code_for(error: LoanEngineError) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return 500


async def loan_engine_error_handler(request: Request, exc: LoanEngineError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=code,
        content=ErrorResponse(reason=exc.reason, detail=exc.message).model_dump()
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Loan Financial Engine API",
        description="Amortization, repayment allocation, arrears and IFRS 9 staging",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LoanEngineError, loan_engine_error_handler)

    app.include_router(calculators_router, prefix="/calculators", tags=["Calculators"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(portfolio_router, prefix="/portfolio", tags=["Portfolio"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_engine_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Loan Financial Engine API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "calculators": "/calculators",
                "loans": "/loans",
                "portfolio": "/portfolio"
            }
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "loan_engine.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
