# snapshot.py

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .errors import BuilderError
from .field_store import SectionLists
from .form_field import BuilderForm, FormField
from .instrumentation import Cat
from .session import BuilderSession
from .types import FieldSection


@dataclass(frozen=True)
class BuilderSnapshot:
    form: BuilderForm
    lists: SectionLists
    contact_first: bool


def _section_fallback(raw: Any, contact_keys: frozenset[str]) -> FieldSection:
    key = raw.get("key") if isinstance(raw, Mapping) else None
    return FieldSection.CONTACT if key in contact_keys else FieldSection.FORM


def build_lists_from_payload(
    data: Mapping[str, Any],
    *,
    contact_keys: Iterable[str],
    session: BuilderSession | None = None,
) -> BuilderSnapshot:
    """
    Turn a GET /builder payload into the two section lists.

    - section: config.section if valid, else CONTACT for contact keys, else FORM
    - order within a section: sortOrder, ties broken by label
    - contact_first: the server's global order starts with the CONTACT block
    """
    contact_keys = frozenset(contact_keys)
    form = BuilderForm.from_wire(data.get("form"))

    if session:
        session.counters.inc("registry.rebuilds")
        session.emit_signal(Cat.REG, "Store rebuild started", form=form.id, reason="snapshot_rebuild")

    fields: list[FormField] = []
    for pos, raw in enumerate(data.get("fields") or []):
        try:
            fields.append(FormField.from_wire(raw, section_fallback=_section_fallback(raw, contact_keys)))
        except BuilderError as e:
            if session:
                session.counters.inc("registry.snapshot_field_skips")
                session.emit_signal(
                    Cat.REG,
                    f"Skipping unreadable field at position {pos}: {e.message}",
                    level="warning",
                    form=form.id,
                    idx=pos,
                )

    def _ordered(section: FieldSection) -> tuple[FormField, ...]:
        return tuple(sorted(
            (f for f in fields if f.section is section),
            key=lambda f: (f.sort_order, f.label),
        ))

    lists = SectionLists(form=_ordered(FieldSection.FORM), contact=_ordered(FieldSection.CONTACT))

    contact_first = False
    if lists.form and lists.contact:
        contact_first = lists.contact[0].sort_order < lists.form[0].sort_order

    if session:
        session.emit_signal(
            Cat.REG,
            "Store rebuild complete",
            form=form.id,
            form_count=len(lists.form),
            contact_count=len(lists.contact),
            contact_first=contact_first,
        )
    return BuilderSnapshot(form=form, lists=lists, contact_first=contact_first)
