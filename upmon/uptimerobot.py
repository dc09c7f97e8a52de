from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Union

import httpx
import structlog

from upmon.models import MonitorType, MonitorValidationError, RemoteMonitor


logger = structlog.get_logger(__name__)

API_URL = "https://api.uptimerobot.com/v3/"
PUSH_DOMAIN = "heartbeat.uptimerobot.com"
AFFILIATE_URL = "https://uptimerobot.com/?red=evlo"

# Printed by the health endpoint; keyword monitors alert when it is missing.
KEYWORD = "upmon PASSES"
KEYWORD_TYPE_ALERT_NOT_EXISTS = "ALERT_NOT_EXISTS"

CHECK_INTERVAL_SECONDS = 300
CHECK_TIMEOUT_SECONDS = 30
GRACE_PERIOD_SECONDS = 0

INVALID_RESPONSE = "invalid response"


@dataclass(frozen=True)
class Ok:
    payload: Any = None


@dataclass(frozen=True)
class Fail:
    message: str
    # True when the API was never reached (timeout, DNS, refused connection).
    transport: bool = False
    # HTTP status of the response, when there was one.
    status: int | None = field(default=None, compare=False)

    @property
    def not_found(self) -> bool:
        if self.status == 404:
            return True
        # Legacy envelopes report a missing monitor with a 200 and an error body.
        return self.status is not None and 200 <= self.status < 300 and "not found" in self.message.lower()


@dataclass(frozen=True)
class Unauthenticated:
    message: str = "No API key configured"


ApiResult = Union[Ok, Fail, Unauthenticated]


def _join_message(message: Any) -> str:
    if isinstance(message, (list, tuple)):
        return ", ".join(str(m) for m in message)
    return str(message)


def normalize_response(status_code: int, body: str | bytes | None) -> Ok | Fail:
    """
    Collapse every envelope the API uses into Ok/Fail.

    Observed shapes:
      {"id": ...}                          direct payload (single monitor, POST, PATCH)
      {"data": ...}                        wrapped payload (lists, account)
      {"code": "009-005", "message": ...}  v3 error
      {"error": ..., "message": ...}       legacy error; message may be a list
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else (body or "")
    if not text.strip():
        if 200 <= status_code < 300:
            return Ok(None)
        return Fail(INVALID_RESPONSE, status=status_code)
    try:
        data = json.loads(text)
    except ValueError:
        return Fail(INVALID_RESPONSE, status=status_code)

    if isinstance(data, dict):
        if "code" in data and "message" in data:
            return Fail(_join_message(data["message"]), status=status_code)
        if "error" in data:
            err = data["error"]
            if data.get("message") is not None:
                return Fail(_join_message(data["message"]), status=status_code)
            if isinstance(err, dict):
                return Fail(_join_message(err.get("message") or err.get("type") or "Unknown error"), status=status_code)
            return Fail(_join_message(err), status=status_code)
        if "data" in data:
            return Ok(data["data"])

    if not (200 <= status_code < 300):
        return Fail(f"HTTP {status_code}", status=status_code)
    return Ok(data)


def expand_heartbeat_url(monitor: RemoteMonitor | dict[str, Any], push_domain: str = PUSH_DOMAIN) -> str:
    """
    The API returns either the full push URL or only its token; the full form is
    https://<push_domain>/m<MONITOR_ID>-<TOKEN>.
    """
    if isinstance(monitor, RemoteMonitor):
        monitor_id, url = monitor.id, monitor.url
    else:
        monitor_id, url = monitor.get("id"), str(monitor.get("url") or "")
    if not url:
        return ""
    if url.startswith(("http://", "https://")):
        return url
    return f"https://{push_domain}/m{monitor_id}-{url}"


class UptimeRobotClient:
    def __init__(
        self,
        api_key: str | Callable[[], str],
        *,
        base_url: str = API_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = float(timeout)
        self._transport = transport

    @property
    def api_key(self) -> str:
        key = self._api_key() if callable(self._api_key) else self._api_key
        return str(key or "").strip()

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def endpoint_url(self, endpoint: str) -> str:
        return self.base_url + endpoint.lstrip("/")

    def request(self, method: str, endpoint: str, params: dict[str, Any] | None = None) -> ApiResult:
        api_key = self.api_key
        if not api_key:
            return Unauthenticated()

        method = method.upper()
        if method not in {"GET", "POST", "PATCH", "DELETE"}:
            return Fail(f"Invalid HTTP method: {method}")

        url = self.endpoint_url(endpoint)
        kwargs: dict[str, Any] = {"headers": self._headers(api_key)}
        if params:
            if method == "GET":
                kwargs["params"] = params
            elif method in {"POST", "PATCH"}:
                kwargs["json"] = params

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("UptimeRobot request failed", method=method, endpoint=endpoint, error=str(exc))
            return Fail(f"Request failed: {exc}", transport=True)

        result = normalize_response(resp.status_code, resp.content)
        if isinstance(result, Fail):
            logger.info("UptimeRobot call rejected", method=method, endpoint=endpoint, status=resp.status_code, message=result.message)
        return result

    def _monitor_result(self, result: ApiResult) -> ApiResult:
        if not isinstance(result, Ok):
            return result
        payload = result.payload
        if not isinstance(payload, dict) or "id" not in payload:
            return Fail(INVALID_RESPONSE)
        try:
            return Ok(RemoteMonitor.from_api(payload))
        except (TypeError, ValueError):
            return Fail(INVALID_RESPONSE)

    def list_monitors(self, params: dict[str, Any] | None = None) -> ApiResult:
        result = self.request("GET", "monitors", params)
        if not isinstance(result, Ok):
            return result
        payload = result.payload
        if isinstance(payload, dict) and isinstance(payload.get("monitors"), list):
            payload = payload["monitors"]
        if not isinstance(payload, list):
            return Fail(INVALID_RESPONSE)
        monitors: list[RemoteMonitor] = []
        for item in payload:
            if not isinstance(item, dict) or "id" not in item:
                continue
            try:
                monitors.append(RemoteMonitor.from_api(item))
            except (TypeError, ValueError):
                continue
        return Ok(monitors)

    def get_account(self) -> ApiResult:
        result = self.request("GET", "account")
        if isinstance(result, Ok) and not isinstance(result.payload, dict):
            return Fail(INVALID_RESPONSE)
        return result

    def get_monitor(self, monitor_id: int) -> ApiResult:
        return self._monitor_result(self.request("GET", f"monitors/{int(monitor_id)}"))

    def create_monitor(
        self,
        friendly_name: str,
        monitor_type: MonitorType | str,
        url: str = "",
        keyword_value: str = "",
        keyword_type: str = KEYWORD_TYPE_ALERT_NOT_EXISTS,
    ) -> ApiResult:
        try:
            mtype = MonitorType.parse(monitor_type)
        except MonitorValidationError as exc:
            return Fail(exc.message)
        params: dict[str, Any] = {
            "friendlyName": friendly_name,
            "type": mtype.value,
            "interval": CHECK_INTERVAL_SECONDS,
            "timeout": CHECK_TIMEOUT_SECONDS,
            "gracePeriod": GRACE_PERIOD_SECONDS,
        }
        if mtype is MonitorType.KEYWORD:
            params["url"] = url
            params["keywordValue"] = keyword_value
            params["keywordType"] = keyword_type
            params["keywordCaseType"] = "CaseSensitive"
            params["httpMethodType"] = "GET"
        # Heartbeat push URLs are generated by UptimeRobot.
        return self._monitor_result(self.request("POST", "monitors", params))

    def update_monitor(self, monitor_id: int, fields: dict[str, Any]) -> ApiResult:
        return self._monitor_result(self.request("PATCH", f"monitors/{int(monitor_id)}", dict(fields)))

    def delete_monitor(self, monitor_id: int) -> ApiResult:
        result = self.request("DELETE", f"monitors/{int(monitor_id)}")
        if isinstance(result, Ok):
            return Ok(None)
        return result
