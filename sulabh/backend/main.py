from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auth import demo_accounts
from config import settings
from database import init_db, session_scope
from routes import auth as auth_routes
from routes import cache as cache_routes
from routes import complaints as complaints_routes
from routes import predictions as predictions_routes
from routes import reports as reports_routes
from services.complaint_store import SqlComplaintStore, configure_store, memory_store
from services.data_service import DataService

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title=settings.app_name)

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_routes.router)
    app.include_router(complaints_routes.router)
    app.include_router(reports_routes.router)
    app.include_router(predictions_routes.router)
    app.include_router(cache_routes.router)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup() -> None:
        logger.info("[CONFIG] DATABASE_URL=%s", settings.database_url)
        logger.info("[CONFIG] DATA_BACKEND=%s", settings.data_backend)
        logger.info("[CONFIG] CACHE_ENABLED=%s CACHE_SERVICE_URL=%s", settings.cache_enabled, settings.cache_service_url)
        logger.info("[CONFIG] RATE_LIMIT_BACKEND=%s", settings.rate_limit_backend)

        init_db(recreate=settings.recreate_db_on_startup)

        configure_store(settings.data_backend)
        data_svc = DataService()
        accounts = demo_accounts()

        if settings.data_backend == "memory":
            store = memory_store()
            data_svc.seed_memory_profiles(store, accounts)
            _seed(data_svc, store)
            return

        with session_scope() as db:
            added = data_svc.ensure_profiles(db, accounts)
            if added:
                logger.info("Created %s demo profiles", added)
        with session_scope() as db:
            _seed(data_svc, SqlComplaintStore(db))

    return app


def _seed(data_svc: DataService, store) -> None:
    # Sample data for demo (only if the store is empty)
    if not settings.seed_sample_data:
        return
    if data_svc.has_any_data(store):
        return
    if not os.path.exists(settings.sample_csv_path):
        logger.warning("Sample CSV not found: %s", settings.sample_csv_path)
        return
    data_svc.ingest_csv(store, settings.sample_csv_path)


app = create_app()
