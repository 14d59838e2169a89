from __future__ import annotations

import logging
import os

from fastapi import FastAPI


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    from pdm_qc.config import get_ai_review_settings, load_env_files

    load_env_files()
    _configure_logging()

    application = FastAPI(
        title="PDM Quality Control API",
        version="1.0.0",
    )

    from pdm_qc.api.routers import quality_control_router

    application.include_router(quality_control_router)

    ai_settings = get_ai_review_settings()
    logging.getLogger(__name__).info(
        "QC API configured ai_review_enabled=%s model=%s",
        ai_settings.is_active,
        ai_settings.model,
    )

    @application.get("/health")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
