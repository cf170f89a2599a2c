"""
FastAPI app exposing the webhook.

Run with: uvicorn express_merge.app:app
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from .config import Settings, configure_logging
from .gateway import build_gateway
from .webhook import handle_webhook

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_app(settings: Optional[Settings] = None, gateway=None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    gateway = gateway if gateway is not None else build_gateway(settings)

    app = FastAPI(title="express-merge")

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "dry_run": settings.dry_run}

    @app.api_route("/api/webhook", methods=ALL_METHODS)
    async def webhook(request: Request):
        body = await request.body()
        # Handlers block on HTTP calls and the poller's sleeps.
        resp = await run_in_threadpool(handle_webhook, request.method, dict(request.headers), body, gateway, settings)
        return PlainTextResponse(resp.text, status_code=resp.status)

    return app


def __getattr__(name: str):
    # Lazy so importing the module (tests) does not require the env to be set.
    if name == "app":
        return create_app()
    raise AttributeError(name)
