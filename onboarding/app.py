import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from onboarding.application import CustomerService, configure_customer_service, create_customer_service
from onboarding.core.settings import Settings
from onboarding.routes import catalog, customers, machines

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, service: CustomerService | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    service = service or create_customer_service(settings)
    configure_customer_service(service)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await service.dispose()
        logger.info("Customer service disposed")

    app = FastAPI(title="Laundromat Onboarding API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(catalog.router, prefix="/api")
    app.include_router(machines.router, prefix="/api")
    app.include_router(customers.router, prefix="/api")
    app.include_router(customers.commissions_router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Laundromat Onboarding API",
                "docs": "/docs",
                "health": "/api/catalog",
            }
        )

    return app


app = create_app()
