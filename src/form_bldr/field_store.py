from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Iterator, Optional

from .errors import StoreInvariantError
from .form_field import FormField
from .instrumentation import Cat
from .session import BuilderSession
from .types import FieldSection


@dataclass(frozen=True)
class SectionLists:
    """
    The two ordered section lists. Never mutated; every operation returns a new pair.
    """
    form: tuple[FormField, ...] = ()
    contact: tuple[FormField, ...] = ()

    def of(self, section: FieldSection) -> tuple[FormField, ...]:
        return self.contact if section is FieldSection.CONTACT else self.form

    def with_section(self, section: FieldSection, items: Iterable[FormField]) -> "SectionLists":
        items = tuple(items)
        if section is FieldSection.CONTACT:
            return replace(self, contact=items)
        return replace(self, form=items)

    def __iter__(self) -> Iterator[FormField]:
        yield from self.form
        yield from self.contact

    def __len__(self) -> int:
        return len(self.form) + len(self.contact)

    def locate(self, field_id: str) -> Optional[tuple[FieldSection, int]]:
        for section in (FieldSection.FORM, FieldSection.CONTACT):
            for idx, f in enumerate(self.of(section)):
                if f.id == field_id:
                    return section, idx
        return None

    def find(self, field_id: str) -> Optional[FormField]:
        return next((f for f in self if f.id == field_id), None)

    def find_by_key(self, key: str) -> Optional[FormField]:
        return next((f for f in self if f.key == key), None)

    def keys(self) -> set[str]:
        return {f.key for f in self}

    def ordered_ids(self, *, contact_first: bool = False) -> list[str]:
        first, second = (self.contact, self.form) if contact_first else (self.form, self.contact)
        return [f.id for f in first] + [f.id for f in second]

    def restamped(self) -> "SectionLists":
        """sortOrder follows list position within each section."""
        def _stamp(items: tuple[FormField, ...]) -> tuple[FormField, ...]:
            return tuple(f if f.sort_order == i else replace(f, sort_order=i) for i, f in enumerate(items))
        return SectionLists(form=_stamp(self.form), contact=_stamp(self.contact))


def clamp_index(index: int, length: int) -> int:
    return max(0, min(index, length))


class FieldStore:
    """
    Holds the authoritative in-memory order of a form's fields.

    - The pure operations (insert_at / remove_from / move_within) return a new
      SectionLists and leave the store untouched.
    - commit() validates and installs a new pair. After a commit the list
      order *is* the truth; sort_order is re-materialized from it.
    """

    def __init__(self, lists: SectionLists | None = None, *, session: BuilderSession | None = None,
                 contact_first: bool = False) -> None:
        self._session = session
        self._lists = SectionLists()
        self.contact_first = contact_first
        self.revision = 0
        self.commit(lists or SectionLists(), reason="init")

    def _emit_diag(self, msg: str, *, key: str | None = None, every_s: float | None = None, **ctx: Any) -> None:
        if self._session:
            self._session.emit_diag(Cat.STORE, msg, key=key, every_s=every_s, **ctx)

    def _inc_counter(self, key: str, n: int = 1) -> None:
        if self._session:
            self._session.counters.inc(key, n)

    # --- reads ---

    @property
    def lists(self) -> SectionLists:
        return self._lists

    def section(self, section: FieldSection) -> tuple[FormField, ...]:
        return self._lists.of(section)

    def get(self, field_id: str) -> Optional[FormField]:
        return self._lists.find(field_id)

    def locate(self, field_id: str) -> Optional[tuple[FieldSection, int]]:
        return self._lists.locate(field_id)

    def find_by_key(self, key: str) -> Optional[FormField]:
        return self._lists.find_by_key(key)

    def stats(self) -> tuple[int, int]:
        return len(self._lists.form), len(self._lists.contact)

    def order(self) -> list[str]:
        """Complete field-id sequence, the body of a REORDER call."""
        return self._lists.ordered_ids(contact_first=self.contact_first)

    def fields(self) -> list[FormField]:
        """Form.fields as the server would see it after a REORDER of order()."""
        by_id = {f.id: f for f in self._lists}
        return [by_id[fid] for fid in self.order()]

    # --- pure list operations ---

    def insert_at(self, section: FieldSection, index: int, field: FormField,
                  base: SectionLists | None = None) -> SectionLists:
        lists = self._lists if base is None else base
        items = list(lists.of(section))
        items.insert(clamp_index(index, len(items)), field)
        return lists.with_section(section, items)

    def remove_from(self, section: FieldSection, field_id: str,
                    base: SectionLists | None = None) -> SectionLists:
        lists = self._lists if base is None else base
        items = [f for f in lists.of(section) if f.id != field_id]
        if len(items) == len(lists.of(section)):
            self._emit_diag("remove_from: field not in section", sec=section, fid=field_id)
        return lists.with_section(section, items)

    def move_within(self, section: FieldSection, from_index: int, to_index: int,
                    base: SectionLists | None = None) -> SectionLists:
        lists = self._lists if base is None else base
        items = list(lists.of(section))
        if not 0 <= from_index < len(items):
            raise IndexError(f"from_index {from_index} out of range for {section.value} ({len(items)} fields)")
        moved = items.pop(from_index)
        items.insert(clamp_index(to_index, len(items)), moved)
        return lists.with_section(section, items)

    # --- commit ---

    def _check(self, lists: SectionLists) -> None:
        seen_ids: set[str] = set()
        seen_keys: set[str] = set()
        for section in (FieldSection.FORM, FieldSection.CONTACT):
            for f in lists.of(section):
                if f.id in seen_ids:
                    raise StoreInvariantError(f"Field {f.id} appears more than once across sections")
                if f.key in seen_keys:
                    raise StoreInvariantError(f"Duplicate field key {f.key!r}")
                if f.section is not section:
                    raise StoreInvariantError(
                        f"Field {f.id} is listed under {section.value} but its section is {f.section.value}"
                    )
                seen_ids.add(f.id)
                seen_keys.add(f.key)

    def commit(self, lists: SectionLists, *, reason: str = "") -> SectionLists:
        self._check(lists)
        self._lists = lists.restamped()
        self.revision += 1
        self._inc_counter("store.commits")
        self._emit_diag(
            "Store committed",
            op=reason or None,
            rev=self.revision,
            form_count=len(self._lists.form),
            contact_count=len(self._lists.contact),
        )
        return self._lists

    # --- debug helpers ---

    def snapshot(self) -> dict:
        """
        Return a simple dict representation of the current store,
        suitable for JSON/YAML dumping.
        """
        snapshot = {
            "revision": self.revision,
            "contact_first": self.contact_first,
            "order": self.order(),
            "sections": {
                section.value: [
                    {
                        "id": f.id,
                        "key": f.key,
                        "label": f.label,
                        "type": f.type.value,
                        "sort_order": f.sort_order,
                        "required": f.required,
                        "is_active": f.is_active,
                    }
                    for f in self._lists.of(section)
                ]
                for section in (FieldSection.FORM, FieldSection.CONTACT)
            },
        }

        self._inc_counter("store.snapshot_count")
        self._emit_diag(
            "Store snapshot emitted",
            key="STORE.snapshot",
            fields=len(self._lists),
        )
        return snapshot
