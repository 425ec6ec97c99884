"""
Currency Exchange API Application Factory
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .session import router as session_router
from .wallets import router as wallets_router
from .transactions import router as transactions_router
from .custody import router as custody_router
from .debts import router as debts_router
from .rates import currencies_router, rates_router, prices_router
from .analytics import router as analytics_router
from .notifications import router as notifications_router
from .users import router as users_router, navigation_router
from .admin import router as admin_router
from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)

    app = FastAPI(
        title="Currency Exchange Shop API",
        description="Wallets, buy/sell transactions, cash custody and debts for a currency exchange shop",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in config.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(session_router, prefix="/auth", tags=["Auth"])
    app.include_router(wallets_router, prefix="/wallets", tags=["Wallets"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(custody_router, prefix="/custody", tags=["Custody"])
    app.include_router(debts_router, prefix="/debts", tags=["Debts"])
    app.include_router(currencies_router, prefix="/currencies", tags=["Currencies"])
    app.include_router(rates_router, prefix="/exchange-rates", tags=["Exchange Rates"])
    app.include_router(prices_router, prefix="/manager-prices", tags=["Manager Prices"])
    app.include_router(analytics_router, prefix="/analytics", tags=["Analytics"])
    app.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])
    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(navigation_router, prefix="/navigation", tags=["Navigation"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "currency_exchange_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Currency Exchange Shop API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/auth",
                "wallets": "/wallets",
                "transactions": "/transactions",
                "custody": "/custody",
                "debts": "/debts",
                "currencies": "/currencies",
                "exchange-rates": "/exchange-rates",
                "manager-prices": "/manager-prices",
                "analytics": "/analytics",
                "notifications": "/notifications",
                "users": "/users",
                "navigation": "/navigation",
                "admin": "/admin",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "currency_exchange.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
