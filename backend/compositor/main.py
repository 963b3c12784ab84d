"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from compositor.api import router
from compositor.core.settings import APP_VERSION, PATHS
from compositor.db.base import Base
from compositor.db.session import engine
from compositor.models import Job, JobEvent  # noqa: F401
from compositor.services.config_store import load_config, save_config

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        PATHS.runtime_root.mkdir(parents=True, exist_ok=True)
        PATHS.jobs_root.mkdir(parents=True, exist_ok=True)

        Base.metadata.create_all(bind=engine)

        # Ensure config file exists with defaults.
        if not PATHS.config_path.exists():
            save_config(load_config())

        logger.info("showcase compositor %s ready (runtime: %s)", APP_VERSION, PATHS.runtime_root)

        yield

    app = FastAPI(title="Showcase Compositor", version=APP_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    return app


app = create_app()
