from __future__ import annotations

from .errors import BadResponseError, BuilderError, ServerError
from .types import FailureRecord, FieldSection, MutationKind


def make_failure_record(
    *,
    form_id: str,
    kind: MutationKind,
    stage: str,
    error: BuilderError,

    diverged: bool = False,

    field_id: str | None = None,
    field_key: str | None = None,
    section: FieldSection | str | None = None,
    index: int | None = None,
) -> FailureRecord:
    trace_id = None
    status = None
    if isinstance(error, (ServerError, BadResponseError)):
        trace_id = error.trace_id
        status = error.status

    rec: FailureRecord = {
        "form_id": form_id,
        "kind": kind,
        "stage": stage,
        "reason": error.code,
        "message": error.message,
        "retryable": False,
        "diverged": diverged,
        "trace_id": trace_id,

        "field_id": field_id,
        "field_key": field_key,
        "section": section.value if isinstance(section, FieldSection) else section,
        "index": index,
    }
    if status is not None:
        rec["status"] = status
    return rec


def describe_failure(rec: FailureRecord) -> str:
    """One line for the error banner: message and code verbatim, plus the correlation id."""
    trace = rec["trace_id"] or "—"
    return f"{rec['message']} ({rec['reason']}, traceId: {trace})"
