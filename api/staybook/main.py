"""StayBook API application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.config import settings
from staybook.core.database import async_session_factory
from staybook.core.logger import configure_logging
from staybook.models import Base
from staybook.routes import bookings, resources
from staybook.services.availability import AvailabilityEngine


def create_app(session_factory: async_sessionmaker[AsyncSession] | None = None) -> FastAPI:
    """Build the application. Tests pass their own session factory."""
    factory = session_factory or async_session_factory

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        configure_logging()
        if settings.create_tables:
            async with factory.kw["bind"].begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        yield

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )
    app.state.availability = AvailabilityEngine(factory, settings)

    # CORS - permissive in dev, lock down in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(resources.router, prefix=settings.api_prefix)
    app.include_router(bookings.router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health():
        return {"status": "ok", "app": settings.app_name}

    return app


app = create_app()
