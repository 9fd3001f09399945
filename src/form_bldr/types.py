from __future__ import annotations
from typing import TypedDict, NotRequired, Any, Literal
from enum import Enum
from dataclasses import dataclass


class FieldSection(str, Enum):
    FORM = "FORM"
    CONTACT = "CONTACT"

    @classmethod
    def parse(cls, raw: Any) -> "FieldSection | None":
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str) and raw.strip().upper() in cls.__members__:
            return cls[raw.strip().upper()]
        return None


class FormStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class DragKind(str, Enum):
    LIBRARY_ITEM = "LIBRARY_ITEM"
    EXISTING_FIELD = "EXISTING_FIELD"


class MutationStatus(str, Enum):
    APPLIED = "applied"
    SELECTED_EXISTING = "selected_existing"
    NOOP = "noop"
    REJECTED = "rejected"      # refused locally, no network call issued
    FAILED = "failed"          # network / server failure
    DISCARDED = "discarded"    # result arrived after detach()


MutationKind = Literal[
    "add", "move", "duplicate", "delete", "patch_field", "patch_form", "reload",
]

# --- wire shapes ---

class ApiErrorShape(TypedDict):
    code: str
    message: str
    details: NotRequired[Any]


class FieldWire(TypedDict):
    id: str
    key: str
    label: str
    type: str
    required: bool
    isActive: bool
    sortOrder: int
    placeholder: str | None
    helpText: str | None
    config: dict[str, Any] | None


class CreateFieldBody(TypedDict):
    key: str
    label: str
    type: str
    required: bool
    isActive: bool
    placeholder: str | None
    helpText: str | None
    config: dict[str, Any]


class FailureRecord(TypedDict):
    form_id: str
    kind: MutationKind
    stage: str                    # validate | create | patch_section | persist_order | ...
    reason: str                   # error code
    message: str
    retryable: bool               # always False; the user re-triggers
    diverged: bool                # local state already mutated optimistically
    trace_id: str | None
    field_id: str | None
    field_key: str | None
    section: str | None
    index: int | None
    status: NotRequired[int]


#--- Dataclasses ---
@dataclass(frozen=True)
class DropPosition:
    section: FieldSection
    index: int


@dataclass(frozen=True)
class MutationOutcome:
    status: MutationStatus
    kind: MutationKind
    field_id: str | None = None
    position: DropPosition | None = None
    failure: FailureRecord | None = None

    @property
    def ok(self) -> bool:
        return self.status in (MutationStatus.APPLIED, MutationStatus.SELECTED_EXISTING, MutationStatus.NOOP)
