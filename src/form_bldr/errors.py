from __future__ import annotations


class BuilderError(RuntimeError):
    """Base for everything the builder core raises. None of these end the session."""

    code = "BUILDER_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(BuilderError):
    """Raised before any network call: key collision, empty options, bad config, system field, ..."""

    code = "VALIDATION_ERROR"


class BuilderBusyError(BuilderError):
    """Raised when a structural mutation is requested while a persist sequence is still outstanding."""

    code = "BUSY"


class NetworkError(BuilderError):
    """Transport failure (connect, timeout, protocol)."""

    code = "NETWORK_ERROR"


class BadResponseError(BuilderError):
    """Response was not JSON or not the expected {ok, data|error} shape."""

    code = "BAD_RESPONSE"

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None,
                 trace_id: str | None = None) -> None:
        super().__init__(message, code=code)
        self.status = status
        self.trace_id = trace_id


class ServerError(BuilderError):
    """Explicit rejection: {ok: false, error: {code, message}}."""

    def __init__(self, code: str, message: str, *, status: int | None = None,
                 trace_id: str | None = None, details: object = None) -> None:
        super().__init__(message, code=code or "API_ERROR")
        self.status = status
        self.trace_id = trace_id
        self.details = details

    def __str__(self) -> str:
        trace = self.trace_id or "—"
        return f"{self.code}: {self.message} (traceId={trace})"


class DragStateError(BuilderError):
    """Raised on an invalid pointer-session transition (e.g. end() while idle)."""

    code = "DRAG_STATE"


class StoreInvariantError(BuilderError):
    """Raised when a commit would leave a field in zero or two sections, or duplicate a key."""

    code = "STORE_INVARIANT"
