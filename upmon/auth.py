from __future__ import annotations

import hmac
from typing import Any

from fastapi import Depends, HTTPException, Request

from upmon.services import UpmonServices


def _auth_header_token(req: Request) -> str:
    raw = req.headers.get("authorization") or ""
    if not raw:
        return ""
    parts = raw.split(None, 1)
    if len(parts) != 2:
        return ""
    scheme, rest = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer":
        return ""
    return rest


def get_services(req: Request) -> UpmonServices:
    services: Any = getattr(req.app.state, "services", None)
    if not isinstance(services, UpmonServices):
        raise RuntimeError("upmon services not configured")
    return services


def require_admin(req: Request, services: UpmonServices = Depends(get_services)) -> None:
    token = _auth_header_token(req)
    if not token:
        raise HTTPException(status_code=401, detail="missing_bearer_token")
    admin_token = services.settings.admin_token
    if not admin_token:
        raise HTTPException(status_code=503, detail="admin_token_not_configured")
    if not hmac.compare_digest(token.strip().encode("utf-8"), admin_token.strip().encode("utf-8")):
        raise HTTPException(status_code=403, detail="invalid_admin_token")
