# src/form_bldr/session.py
import logging
from typing import Any, Mapping, Optional

import httpx

from .errors import BadResponseError, NetworkError, ServerError
from .instrumentation import Cat, Counters, InstrumentPolicy, LogMode, RateLimiter, format_ctx
from .. import config  # src/config.py


class BuilderSession:
    """
    Owns the HTTP client and the instrumentation for one builder session.

    Every request goes through `request()`, which unwraps the admin API
    envelope ({ok, data} | {ok: false, error}) and turns anything else into
    one of the builder errors. Nothing is retried here.
    """

    def __init__(
        self,
        logger=None,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float | None = None,
        log_mode: str | None = None,
    ):
        self.logger = logger or logging.getLogger("form_bldr")
        self.base_url = (base_url or config.FORM_BLDR_BASE_URL).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else config.TIMEOUT_S

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._default_headers(),
            timeout=self.timeout_s,
            transport=transport,
        )

        # Instrumentation setup
        raw_mode = (log_mode or config.LOG_MODE or "live").lower()
        mode = LogMode(raw_mode) if raw_mode in ("live", "debug", "trace") else LogMode.LIVE

        self.instr_policy = InstrumentPolicy(
            mode=mode,
            include_ctx=True,
            rate_limits_s=getattr(config, "LOG_RATE_LIMITS_S", {}) or {},
        )
        self.counters = Counters()
        self._rate = RateLimiter()
        self.last_trace_id: Optional[str] = None
        self.emit_signal(
            Cat.STARTUP,
            "Session initialized",
            kind="startup",
            log_mode=mode.value,
            base_url=self.base_url,
            timeout_s=self.timeout_s,
        )

    @staticmethod
    def _default_headers() -> dict[str, str]:
        headers = {"accept": "application/json"}
        if config.FORM_BLDR_TENANT_SLUG:
            headers["x-tenant-slug"] = config.FORM_BLDR_TENANT_SLUG
        if config.FORM_BLDR_DEV_USER_ID:
            headers["x-user-id"] = config.FORM_BLDR_DEV_USER_ID
        if config.FORM_BLDR_API_TOKEN:
            headers["authorization"] = f"Bearer {config.FORM_BLDR_API_TOKEN}"
        return headers

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        """
        Send one request and return the envelope's `data`.

        Raises:
          NetworkError      transport failure (connect, timeout, protocol)
          BadResponseError  non-JSON body or unexpected shape (HTTP_ERROR when status >= 400)
          ServerError       {ok: false, error: {code, message}}
        """
        method = method.upper()
        self.counters.inc("api.requests")
        self.emit_trace(Cat.API, "Request", op=method, path=path, body=json)

        try:
            resp = await self.client.request(method, path, json=json)
        except httpx.HTTPError as e:
            self.counters.inc("api.network_errors")
            self.emit_signal(Cat.API, f"Network error: {e!r}", level="warning", op=method, path=path)
            raise NetworkError(f"Network error calling {method} {path}: {e}") from e

        data = self._unwrap(resp)
        self.emit_diag(
            Cat.API,
            "Response ok",
            op=method,
            path=path,
            status=resp.status_code,
            trace=self.last_trace_id,
        )
        return data

    def _unwrap(self, resp: httpx.Response) -> Any:
        header_trace = resp.headers.get("x-trace-id")
        status = resp.status_code

        try:
            body = resp.json()
        except ValueError:
            body = None

        trace_id = header_trace
        if isinstance(body, Mapping) and isinstance(body.get("traceId"), str):
            trace_id = trace_id or body["traceId"]
        self.last_trace_id = trace_id

        if not isinstance(body, Mapping) or not isinstance(body.get("ok"), bool):
            self.counters.inc("api.bad_responses")
            code = "HTTP_ERROR" if status >= 400 else "BAD_RESPONSE"
            msg = f"HTTP {status}" if status >= 400 else "Unexpected response shape from builder API."
            self.emit_signal(Cat.API, msg, level="warning", status=status, trace=trace_id)
            raise BadResponseError(msg, code=code, status=status, trace_id=trace_id)

        if body["ok"]:
            return body.get("data")

        err = body.get("error")
        err = err if isinstance(err, Mapping) else {}
        self.counters.inc("api.server_errors")
        code = str(err.get("code") or "API_ERROR")
        message = str(err.get("message") or f"Request failed (HTTP {status}).")
        self.emit_signal(Cat.API, f"Server rejected request: {message}", level="warning",
                         code=code, status=status, trace=trace_id)
        raise ServerError(code, message, status=status, trace_id=trace_id, details=err.get("details"))

    async def close(self) -> None:
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Instrumentation
    # ------------------------------------------------------------------

    def _format(self, cat: Cat, msg: str, ctx: dict[str, Any]) -> str:
        prefix = f"[{cat.value}]"
        if self.instr_policy.include_ctx:
            c = format_ctx(**ctx)
            if c:
                msg = f"{msg} :: {c}"
        return f"{prefix} {msg}"

    def emit_signal(self, cat: Cat, msg: str, *, level: str | int = "info", **ctx):
        # always allowed
        line = self._format(cat, msg, ctx)
        if isinstance(level, int):
            self.logger.log(level, line)
            return
        lvl = (level or "info").lower()
        if lvl in ("warn", "warning"):
            self.logger.warning(line)
        elif lvl in ("error", "err", "critical", "fatal"):
            self.logger.error(line)
        elif lvl in ("debug", "trace"):
            self.logger.debug(line)
        else:
            self.logger.info(line)

    def _allowed(self, key: str | None, every_s: float | None) -> bool:
        if key and every_s is None:
            every_s = self.instr_policy.rate_limits_s.get(key)
        if key and every_s:
            return self._rate.allow(key, every_s)
        return True

    def emit_diag(self, cat: Cat, msg: str, *, key: str | None = None, every_s: float | None = None, **ctx):
        # gated by mode; DEBUG+ only
        if self.instr_policy.mode == LogMode.LIVE:
            return
        if not self._allowed(key, every_s):
            return
        self.logger.debug(self._format(cat, msg, ctx))

    def emit_trace(self, cat: Cat, msg: str, *, key: str | None = None, every_s: float | None = None, **ctx):
        if self.instr_policy.mode != LogMode.TRACE:
            return
        if not self._allowed(key, every_s):
            return
        self.logger.debug(self._format(cat, msg, ctx))
