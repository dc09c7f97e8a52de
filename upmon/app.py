from __future__ import annotations

import asyncio
import hmac
import time
from typing import Any

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from upmon.admin import build_form_state, parse_submission
from upmon.auth import require_admin
from upmon.health import CHECK_MAINTENANCE
from upmon.models import MonitorValidationError
from upmon.schema import MonitorSubmission
from upmon.services import UpmonServices, build_services
from upmon.settings import UpmonSettings
from upmon.uptimerobot import KEYWORD


logger = structlog.get_logger(__name__)


def check_response(services: UpmonServices, token: str | None) -> PlainTextResponse:
    config = services.config
    if not config.enabled:
        return PlainTextResponse("disabled", status_code=404)

    expected = config.check_token
    if expected:
        provided = token or ""
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            return PlainTextResponse("forbidden", status_code=403)

    errors = services.aggregator.run_enabled_checks()
    if errors:
        status = 503 if CHECK_MAINTENANCE in errors else 500
        return PlainTextResponse("; ".join(errors.values()), status_code=status)
    return PlainTextResponse(KEYWORD, status_code=200)


def create_app(settings: UpmonSettings | None = None, services: UpmonServices | None = None) -> FastAPI:
    app = FastAPI(title="upmon", version="0.1.0")
    if services is None:
        services = build_services(settings or UpmonSettings())
    app.state.services = services
    app.state.settings = services.settings

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "ts": time.time()}

    # Polled by UptimeRobot keyword monitors; the body is what the keyword matches.
    @app.get("/check", response_class=PlainTextResponse)
    async def check(token: str | None = None) -> PlainTextResponse:
        return await asyncio.to_thread(check_response, app.state.services, token)

    @app.get("/api/v1/monitor")
    async def api_get_monitor(_auth: None = Depends(require_admin)) -> dict[str, Any]:
        svc: UpmonServices = app.state.services
        state = await asyncio.to_thread(
            build_form_state,
            svc.client,
            svc.config,
            check_url=svc.build_check_url(""),
            site_name=svc.settings.site_name,
        )
        return {"ok": True, **state.to_dict()}

    @app.put("/api/v1/monitor")
    async def api_put_monitor(_auth: None = Depends(require_admin), req: MonitorSubmission | None = None) -> dict[str, Any]:
        if req is None:
            raise HTTPException(status_code=400, detail="missing_body")
        svc: UpmonServices = app.state.services
        try:
            desired = parse_submission(
                monitor_id=req.monitor_id,
                friendly_name=req.friendly_name,
                monitor_type=req.type,
                check_token=req.check_token,
            )
            linkage = await asyncio.to_thread(svc.reconciler.reconcile, desired)
        except MonitorValidationError as exc:
            logger.info("Rejected monitor submission", reason=str(exc))
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"ok": True, "linkage": linkage.to_dict()}

    return app
