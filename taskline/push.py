from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Protocol, Sequence
from urllib import parse, request
from urllib.error import HTTPError, URLError

from .config import Settings, get_settings
from .feed import FeedRegistry, NotificationFeed


logger = logging.getLogger("taskline.push")

# Per-token error codes meaning the registration is permanently unusable.
ERROR_INVALID_TOKEN = "messaging/invalid-registration-token"
ERROR_TOKEN_NOT_REGISTERED = "messaging/registration-token-not-registered"

INVALID_TOKEN_CODES = {ERROR_INVALID_TOKEN, ERROR_TOKEN_NOT_REGISTERED}

# Failures that say nothing about the token; the device is kept.
ERROR_INVALID_ARGUMENT = "messaging/invalid-argument"
ERROR_NOT_FOUND = "messaging/not-found"
ERROR_UNAVAILABLE = "messaging/unavailable"

PROVIDER_LOCAL = "local"
PROVIDER_LOGGING = "logging"
PROVIDER_FCM = "fcm"


@dataclass(frozen=True)
class PushResult:
    ok: bool
    error_code: str | None = None
    detail: str | None = None

    @property
    def token_invalid(self) -> bool:
        return (not self.ok) and self.error_code in INVALID_TOKEN_CODES


class PushProvider(Protocol):
    def send_multicast(self, tokens: Sequence[str], title: str, body: str) -> list[PushResult]:
        """Send one message per token; results are returned in token order."""
        ...


def _truncate(s: str, max_len: int) -> str:
    s2 = str(s or "")
    if max_len <= 0:
        return ""
    if len(s2) <= max_len:
        return s2
    if max_len <= 3:
        return s2[:max_len]
    return s2[: max_len - 3] + "..."


def _token_hint(token: str) -> str:
    t = str(token or "")
    return f"...{t[-6:]}" if len(t) > 6 else "***"


class LoggingPushProvider:
    """Logs each push and reports success. Used when no provider is configured."""

    def send_multicast(self, tokens: Sequence[str], title: str, body: str) -> list[PushResult]:
        for tok in tokens:
            logger.info("Push (%s): %s | %s", _token_hint(tok), title, _truncate(body, 200))
        return [PushResult(ok=True) for _ in tokens]


class LocalPushProvider:
    """Delivers pushes straight into open client feeds keyed by token.

    A token with no open feed belongs to a client that is offline, which is
    reported as unavailable rather than as a stale token.
    """

    def __init__(self, feeds: FeedRegistry | dict[str, NotificationFeed] | None = None):
        self.feeds = feeds if feeds is not None else FeedRegistry()

    def send_multicast(self, tokens: Sequence[str], title: str, body: str) -> list[PushResult]:
        out: list[PushResult] = []
        for tok in tokens:
            feed = self.feeds.get(str(tok))
            if feed is None:
                out.append(PushResult(ok=False, error_code=ERROR_UNAVAILABLE, detail="No open client feed"))
                continue
            feed.receive(title, body)
            out.append(PushResult(ok=True))
        return out


# ---- FCM HTTP v1 -------------------------------------------------------------------


class PushHttpError(RuntimeError):
    def __init__(self, status: int, body: str, message: str):
        super().__init__(message)
        self.status = int(status)
        self.body = body


def _safe_url_for_log(url: str) -> str:
    """Return a log-safe URL string. Omits query strings and token-like path segments."""

    raw = str(url or "")
    tokenish = re.compile(r"^[A-Za-z0-9._~:-]{24,}$")
    try:
        p = parse.urlparse(raw)
        if not (p.scheme and p.netloc):
            return _truncate(raw, 200)
        parts = [("<redacted>" if tokenish.match(seg) else seg) for seg in (p.path or "").split("/") if seg]
        return _truncate(f"{p.scheme}://{p.netloc}/" + "/".join(parts), 200)
    except Exception:
        return _truncate(raw, 200)


def _http_request(
    *,
    url: str,
    method: str = "POST",
    headers: dict[str, str] | None = None,
    data: bytes | None = None,
    timeout: int = 10,
) -> tuple[int, str]:
    parsed = parse.urlparse(str(url))
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Invalid push endpoint URL")

    hdrs = {"User-Agent": "Taskline"}
    if headers:
        for k, v in headers.items():
            if k and v is not None:
                hdrs[str(k)] = str(v)
    req = request.Request(url=str(url), data=data, headers=hdrs, method=str(method).upper())

    safe_url = _safe_url_for_log(str(url))
    try:
        with request.urlopen(req, timeout=timeout) as resp:  # nosec B310
            body = resp.read() or b""
            status = int(getattr(resp, "status", 200))
            text = body.decode("utf-8", errors="replace")
    except HTTPError as e:
        status = int(getattr(e, "code", 0) or 0)
        try:
            body = e.read() or b""
        except Exception:
            body = b""
        text = body.decode("utf-8", errors="replace")
        raise PushHttpError(status, text, f"HTTP {status} from {safe_url}: {_truncate(text.strip(), 300)}") from None
    except URLError as e:
        reason = getattr(e, "reason", None)
        raise RuntimeError(f"Request to {safe_url} failed: {reason or e}") from None

    if status < 200 or status >= 300:
        raise PushHttpError(status, text, f"HTTP {status} from {safe_url}: {_truncate(text.strip(), 300)}")
    return status, text


def _token_violation(err: dict) -> bool:
    """True when an INVALID_ARGUMENT error points at the registration token itself."""
    for d in err.get("details") or []:
        if not isinstance(d, dict):
            continue
        for v in d.get("fieldViolations") or []:
            if isinstance(v, dict) and str(v.get("field") or "") == "message.token":
                return True
    return "registration token" in str(err.get("message") or "").lower()


def classify_fcm_error(status: int, body: str) -> str:
    """Map an FCM v1 error response onto a messaging/* error code.

    Only UNREGISTERED, or INVALID_ARGUMENT about the token field, mark a
    token as stale. A bare 404 usually means a wrong project or endpoint.
    """
    try:
        err = (json.loads(body or "{}") or {}).get("error") or {}
    except Exception:
        err = {}
    if not isinstance(err, dict):
        err = {}
    fcm_status = str(err.get("status") or "").upper()

    fcm_code = ""
    for d in err.get("details") or []:
        if isinstance(d, dict) and d.get("errorCode"):
            fcm_code = str(d["errorCode"]).upper()
            break

    if fcm_code == "UNREGISTERED":
        return ERROR_TOKEN_NOT_REGISTERED
    if fcm_code == "INVALID_ARGUMENT" or fcm_status == "INVALID_ARGUMENT":
        return ERROR_INVALID_TOKEN if _token_violation(err) else ERROR_INVALID_ARGUMENT
    if fcm_code == "SENDER_ID_MISMATCH":
        return "messaging/mismatched-credential"
    if fcm_code == "QUOTA_EXCEEDED" or int(status) == 429:
        return "messaging/message-rate-exceeded"
    if fcm_status == "NOT_FOUND" or int(status) == 404:
        return ERROR_NOT_FOUND
    if int(status) >= 500:
        return "messaging/internal-error"
    return f"messaging/{(fcm_code or fcm_status or 'unknown-error').lower().replace('_', '-')}"


class FcmPushProvider:
    """Firebase Cloud Messaging over the HTTP v1 API (one request per token)."""

    def __init__(self, *, project_id: str, access_token: str, endpoint: str = "https://fcm.googleapis.com", timeout: int = 10):
        if not project_id or not access_token:
            raise ValueError("FCM requires project_id and access_token")
        self.project_id = str(project_id).strip()
        self.access_token = str(access_token).strip()
        self.endpoint = str(endpoint or "https://fcm.googleapis.com").strip().rstrip("/")
        self.timeout = int(timeout)

    @property
    def url(self) -> str:
        return f"{self.endpoint}/v1/projects/{parse.quote(self.project_id)}/messages:send"

    def _send_one(self, token: str, title: str, body: str) -> PushResult:
        payload = {"message": {"token": token, "notification": {"title": title, "body": body}}}
        try:
            _http_request(
                url=self.url,
                headers={"Content-Type": "application/json", "Authorization": f"Bearer {self.access_token}"},
                data=json.dumps(payload).encode("utf-8"),
                timeout=self.timeout,
            )
        except PushHttpError as e:
            return PushResult(ok=False, error_code=classify_fcm_error(e.status, e.body), detail=str(e))
        except Exception as e:
            return PushResult(ok=False, error_code="messaging/network-error", detail=f"{type(e).__name__}: {e}")
        return PushResult(ok=True)

    def send_multicast(self, tokens: Sequence[str], title: str, body: str) -> list[PushResult]:
        return [self._send_one(str(tok), title, body) for tok in tokens]


def provider_from_settings(settings: Settings, *, local: LocalPushProvider | None = None) -> PushProvider:
    cfg = settings.notifications
    kind = str(cfg.provider or "").strip().lower()
    if kind == PROVIDER_FCM:
        return FcmPushProvider(
            project_id=cfg.fcm_project_id,
            access_token=cfg.fcm_access_token,
            endpoint=cfg.fcm_endpoint,
        )
    if kind == PROVIDER_LOCAL:
        return local or LocalPushProvider()
    if kind not in ("", PROVIDER_LOGGING):
        logger.warning("Unknown push provider %r; falling back to logging", kind)
    return LoggingPushProvider()


_PROVIDER: PushProvider | None = None
_PROVIDER_LOCK = threading.Lock()


def get_provider() -> PushProvider:
    """Process-wide provider, built from settings on first use."""

    global _PROVIDER
    with _PROVIDER_LOCK:
        if _PROVIDER is None:
            _PROVIDER = provider_from_settings(get_settings())
        return _PROVIDER


def set_provider(provider: PushProvider | None) -> None:
    global _PROVIDER
    with _PROVIDER_LOCK:
        _PROVIDER = provider
