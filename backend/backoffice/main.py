from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy import text

from backoffice.api.v1.router import api_router
from backoffice.core.config import Settings, get_settings
from backoffice.core.db import get_engine
from backoffice.core.security import require_basic_auth


logger = logging.getLogger(__name__)


@lru_cache
def _alembic_head() -> str | None:
    ini = Path(os.getenv("ALEMBIC_CONFIG_PATH", str(Path(__file__).resolve().parents[1] / "alembic.ini")))
    if not ini.exists():
        return None
    cfg = Config(str(ini))
    cfg.set_main_option("script_location", str(ini.parent / "alembic"))
    return ScriptDirectory.from_config(cfg).get_current_head()


def _migration_check(current: str | None) -> dict[str, Any]:
    head = _alembic_head()
    if head is None:
        state = "unknown_repo_head"
    elif current is None:
        state = "not_migrated"
    else:
        state = "up_to_date" if current == head else "behind_head"
    return {"state": state, "current_revision": current, "repo_head_revision": head}


def _issuer_check(settings: Settings) -> dict[str, Any]:
    check: dict[str, Any] = {"mode": settings.afip_issuer_mode, "environment": settings.afip_env}
    if not settings.afip_mock_enabled:
        check["gateway"] = settings.afip_gateway_base_url
    return check


def _cors_origins(raw: str | None) -> list[str]:
    return [o.strip() for o in (raw or "").split(",") if o.strip()]


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Travel agency back-office: fiscal vouchers",
        version="1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    origins = _cors_origins(settings.cors_origins)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok", "afip_issuer_mode": str(settings.afip_issuer_mode)}

    @app.get("/healthz/deep")
    async def deep_healthz() -> JSONResponse:
        checks: dict[str, Any] = {"afip_issuer": _issuer_check(settings)}
        try:
            async with get_engine().connect() as conn:
                current = await conn.scalar(text("SELECT version_num FROM alembic_version LIMIT 1"))
        except Exception as exc:
            logger.warning("Deep health check could not reach the database", exc_info=True)
            checks["database"] = "error"
            return JSONResponse(
                status_code=503,
                content={"status": "error", "checks": checks, "error": f"{exc.__class__.__name__}: {exc}"},
            )

        checks["database"] = "ok"
        checks["migration"] = _migration_check(current)
        healthy = checks["migration"]["state"] == "up_to_date"
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "ok" if healthy else "degraded", "checks": checks},
        )

    @app.get("/openapi.json", include_in_schema=False, dependencies=[Depends(require_basic_auth)])
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/docs", include_in_schema=False, dependencies=[Depends(require_basic_auth)])
    async def swagger_ui_html():
        return get_swagger_ui_html(openapi_url="/openapi.json", title=app.title)

    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
