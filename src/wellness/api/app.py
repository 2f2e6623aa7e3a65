from __future__ import annotations

import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wellness.api.errors import ApiError
from wellness.api.routes import router
from wellness.api.security import RequestSizeLimitMiddleware
from wellness.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from wellness.runtime.executor import LedgerExecutor, build_executor as _build_executor
from wellness.runtime.ledger_config import load_ledger_config


def build_executor() -> LedgerExecutor:
    """Build a LedgerExecutor for the API runtime.

    This wrapper exists so tests can monkeypatch `wellness.api.app.build_executor`
    without reaching into runtime modules.
    """
    cfg = load_ledger_config()
    configure_structured_logging(cfg.log_level)
    return _build_executor(cfg)


def _parse_cors_origins() -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - If WELLNESS_CORS_ORIGINS is unset/empty -> CORS disabled
      - Wildcard "*" is rejected in WELLNESS_MODE=prod
    """
    raw = os.environ.get("WELLNESS_CORS_ORIGINS", "").strip()
    mode = os.environ.get("WELLNESS_MODE", "prod").strip().lower()

    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in WELLNESS_CORS_ORIGINS."
            )
        return ["*"]

    return origins


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_json())


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load ledger config + attach executor
      - False: keep lightweight for unit tests (attach app.state.executor yourself)
    """
    mode = os.environ.get("WELLNESS_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="Wellness Ledger API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="Wellness Ledger API")

    app.state.executor = build_executor() if boot_runtime else None

    app.add_exception_handler(ApiError, _api_error_handler)

    # --- Middleware (last added runs first) ---
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    cors_origins = _parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=cors_origins != ["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )

    app.include_router(router, prefix="/v1")

    return app
