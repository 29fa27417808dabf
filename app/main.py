from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from app.db.init_db import init_db
from app.errors import ServiceError, service_error_handler
from app.logging_config import configure_app_logging
from app.routers import admin, health, history, observations, programs, sessions, sites, users
from app.security.dependencies import enforce_security
from app.security.evaluator import get_access_evaluator
from app.settings import get_settings

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        configure_app_logging(settings.log_level)
        logger.info("App startup beginning")

        app.state.access_policy = get_access_evaluator().policy
        logger.info("Loaded access policy: %s", settings.resolved_access_policy_path())
        init_db(seed=settings.seed_demo_data)
        logger.info("Database initialized (tables ensured, seed=%s)", settings.seed_demo_data)

        yield

    # Global dependency: every route is authenticated unless the policy marks it public.
    app = FastAPI(title="fieldtrack", dependencies=[Depends(enforce_security)], lifespan=lifespan)
    app.add_exception_handler(ServiceError, service_error_handler)

    app.include_router(health.router)
    app.include_router(users.router)
    app.include_router(programs.router)
    app.include_router(sites.router)
    app.include_router(sessions.router)
    app.include_router(observations.router)
    app.include_router(history.router)
    app.include_router(admin.router)

    return app


app = create_app()
