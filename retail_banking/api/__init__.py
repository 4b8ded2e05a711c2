"""
Retail Banking API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth import BankingSystem, get_banking_system
from .session import router as session_router
from .accounts import router as accounts_router
from .transfers import router as transfers_router
from .deposits import router as deposits_router
from .loans import router as loans_router
from .statements import router as statements_router
from .admin import router as admin_router
from ..config import get_config
from ..logging_config import setup_logging


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Banking system to serve; the lazily built global one when None
    """
    app = FastAPI(
        title="Retail Banking API",
        description="Customer banking: accounts, transfers, deposits, loans and statements",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    if system is not None:
        app.dependency_overrides[get_banking_system] = lambda: system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(session_router, prefix="/auth", tags=["Auth"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transfers_router, prefix="/transfers", tags=["Transfers"])
    app.include_router(deposits_router, prefix="/deposits", tags=["Deposits"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(statements_router, prefix="/statements", tags=["Statements"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "retail_banking_api",
            "version": "1.0.0"
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Retail Banking API",
            "version": "1.0.0",
            "description": "Customer banking with admin back office",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/auth",
                "accounts": "/accounts",
                "transfers": "/transfers",
                "deposits": "/deposits",
                "loans": "/loans",
                "statements": "/statements",
                "admin": "/admin"
            }
        }

    return app


# Application served by uvicorn; the banking system is built on first request
app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        "retail_banking.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )


__all__ = ["app", "create_app", "run_server", "BankingSystem", "get_banking_system"]
