from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from .config_builder import build_field_config
from .errors import ValidationError
from .field_store import SectionLists
from .form_field import NewField
from .instrumentation import Cat
from .library_catalog import LibraryItem
from .session import BuilderSession
from .types import FieldSection
from .. import config

_KEY_RE = re.compile(r"^[A-Za-z0-9_]+$")


def slugify(raw: str) -> str:
    """'Job Title (optional)' -> 'job_title_optional'. Never returns an empty string."""
    s = unicodedata.normalize("NFKD", raw or "").encode("ascii", "ignore").decode("ascii")
    s = re.sub(r"[^a-z0-9]+", "_", s.lower()).strip("_")
    s = s[: config.KEY_MAX_LENGTH].rstrip("_")
    return s or config.KEY_FALLBACK


def unique_key(base: str, taken: Iterable[str]) -> str:
    """First of base, base_2, base_3, ... not in `taken`, truncated to fit KEY_MAX_LENGTH."""
    taken = set(taken)
    base = base[: config.KEY_MAX_LENGTH]
    if base not in taken:
        return base
    n = config.KEY_SUFFIX_START
    while True:
        suffix = f"_{n}"
        candidate = f"{base[: config.KEY_MAX_LENGTH - len(suffix)]}{suffix}"
        if candidate not in taken:
            return candidate
        n += 1


@dataclass(frozen=True)
class SelectExisting:
    """Contact item whose key is already on the form: select it instead of adding."""
    field_id: str
    section: FieldSection


@dataclass(frozen=True)
class CreateNew:
    field: NewField
    section: FieldSection


AddPlan = Union[SelectExisting, CreateNew]


class SectionAssignmentPolicy:
    """
    Decides where a library item lands and which key it gets.

    - contact items: fixed key, always CONTACT, at most one per form
    - generic / preset items: FORM unless the template says CONTACT;
      keys are slugified and suffixed until unique across both sections
    """

    def __init__(self, contact_keys: Iterable[str], *, session: BuilderSession | None = None):
        self.contact_keys = frozenset(contact_keys)
        self._session = session

    def _emit_diag(self, msg: str, **ctx: Any) -> None:
        if self._session:
            self._session.emit_diag(Cat.POLICY, msg, **ctx)

    def _inc_counter(self, key: str) -> None:
        if self._session:
            self._session.counters.inc(key)

    def target_section(self, item: LibraryItem, drop_section: FieldSection | None = None) -> FieldSection:
        """Contact items and templates naming a section are fixed; anything else follows the drop."""
        if item.is_contact:
            return FieldSection.CONTACT
        return item.section or drop_section or FieldSection.FORM

    def is_contact_key(self, key: str) -> bool:
        return key in self.contact_keys

    def plan_add(self, item: LibraryItem, lists: SectionLists, *, label: str | None = None,
                 drop_section: FieldSection | None = None) -> AddPlan:
        """
        Raises ValidationError for bad template config (e.g. select without options).
        """
        section = self.target_section(item, drop_section)

        if item.is_contact:
            existing = lists.find_by_key(item.key or "")
            if existing is not None:
                self._inc_counter("policy.contact_reselects")
                self._emit_diag("Contact key already present; selecting", key=item.key, fid=existing.id,
                                sec=existing.section)
                return SelectExisting(field_id=existing.id, section=existing.section)
            key = item.key or ""
        else:
            # contact keys stay reserved even while absent, so a later contact add can't collide
            key = unique_key(slugify(item.key_base), lists.keys() | self.contact_keys)

        cfg = build_field_config(item.type, {**item.config, "section": section.value}, strict=True)
        new_field = NewField(
            key=key,
            label=label or item.field_label,
            type=item.type,
            config=cfg,
            required=item.required,
            placeholder=item.placeholder,
            help_text=item.help_text,
        )
        self._emit_diag("Planned create", key=key, sec=section, item=item.id)
        return CreateNew(field=new_field, section=section)

    def ensure_key_available(self, key: str, lists: SectionLists, *, field_id: Optional[str] = None) -> None:
        """Validate a user-edited key for the field `field_id` (None = a new field)."""
        if not key or len(key) > config.KEY_MAX_LENGTH or not _KEY_RE.match(key):
            raise ValidationError(
                f"Key {key!r} must be 1-{config.KEY_MAX_LENGTH} characters of letters, digits or '_'.",
                code="INVALID_KEY",
            )
        owner = lists.find_by_key(key)
        if owner is not None and owner.id != field_id:
            raise ValidationError(f"Key {key!r} is already used by another field.", code="KEY_CONFLICT")
        if self.is_contact_key(key):
            current = lists.find(field_id) if field_id else None
            if current is None or current.key != key:
                raise ValidationError(f"Key {key!r} is reserved for the contact field.", code="KEY_CONFLICT")
