from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Union

from .builder_api import BuilderAPI
from .config_builder import config_to_wire, merge_config_patch, with_section
from .drop_resolver import DropPositionResolver, DropTarget, Rect
from .errors import BuilderBusyError, BuilderError, ValidationError
from .failures import describe_failure, make_failure_record
from .field_store import FieldStore, clamp_index
from .form_field import BuilderForm, FormField
from .instrumentation import Cat
from .library_catalog import LibraryCatalog, LibraryItem
from .section_policy import SectionAssignmentPolicy, SelectExisting
from .session import BuilderSession
from .snapshot import build_lists_from_payload
from .timing import phase_timer
from .types import (
    DragKind,
    DropPosition,
    FailureRecord,
    FieldSection,
    FormStatus,
    MutationKind,
    MutationOutcome,
    MutationStatus,
)
from .. import config


@dataclass
class BuilderView:
    """What the canvas shows: which section tab is active and which field is selected."""
    active_section: FieldSection = FieldSection.FORM
    selected_field_id: Optional[str] = None


@dataclass
class _Step:
    """Where a mutation got to. Decides REJECTED vs FAILED and the diverged flag."""
    kind: MutationKind
    stage: str = "validate"
    diverged: bool = False
    field_id: Optional[str] = None
    field_key: Optional[str] = None
    section: Optional[FieldSection] = None
    index: Optional[int] = None

    def at(self, section: FieldSection, index: int) -> None:
        self.section, self.index = section, index

    def position(self) -> Optional[DropPosition]:
        if self.section is None or self.index is None:
            return None
        return DropPosition(self.section, self.index)


class ReorderCoordinator:
    """
    Runs every builder mutation as: validate locally -> mutate the store
    (optimistic) -> persist through the BuilderAPI.

    Failure model:
    - Errors never escape; each call returns a MutationOutcome. Failures are
      also appended to `failures` and logged.
    - REJECTED: refused before any network call. FAILED: the API call failed.
    - No rollback. If the store was already changed the record says
      diverged=True and `self.diverged` stays set until reload() succeeds.
    - One structural sequence (add / move / duplicate / delete) at a time;
      a second one while the first is outstanding is REJECTED with BUSY.
    - After detach(), results that come back are DISCARDED, never applied.
    """

    def __init__(
        self,
        api: BuilderAPI,
        form_id: str,
        *,
        catalog: LibraryCatalog,
        store: FieldStore | None = None,
        policy: SectionAssignmentPolicy | None = None,
        resolver: DropPositionResolver | None = None,
    ):
        self.api = api
        self.session: BuilderSession = api.session
        self.form_id = form_id
        self.catalog = catalog
        self.store = store or FieldStore(session=self.session)
        self.policy = policy or SectionAssignmentPolicy(catalog.contact_keys(), session=self.session)
        self.resolver = resolver or DropPositionResolver(self.session)

        self.form: Optional[BuilderForm] = None
        self.view = BuilderView()
        self.failures: list[FailureRecord] = []
        self.diverged = False
        self.busy = False
        self.detached = False
        self._loaded = False

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _structural(self, kind: MutationKind):
        if self.busy:
            raise BuilderBusyError(f"Another change is still being saved; {kind} refused.")
        self.busy = True
        try:
            yield
        finally:
            self.busy = False

    def _check_attached(self) -> None:
        if self.detached:
            raise BuilderError("Builder has been closed.", code="DETACHED")

    def _applied(self, step: _Step, status: MutationStatus = MutationStatus.APPLIED) -> MutationOutcome:
        self.session.counters.inc(f"coord.{step.kind}.{status.value}")
        self.session.emit_signal(
            Cat.COORD,
            f"{step.kind} {status.value}",
            form=self.form_id,
            sec=step.section,
            fid=step.field_id,
            key=step.field_key,
            idx=step.index,
        )
        return MutationOutcome(status=status, kind=step.kind, field_id=step.field_id, position=step.position())

    def _discarded(self, step: _Step) -> MutationOutcome:
        self.session.counters.inc("coord.discarded")
        self.session.emit_signal(
            Cat.COORD, f"{step.kind} result arrived after detach; discarded", form=self.form_id, fid=step.field_id
        )
        return MutationOutcome(status=MutationStatus.DISCARDED, kind=step.kind, field_id=step.field_id)

    def _failed(self, step: _Step, error: BuilderError) -> MutationOutcome:
        status = MutationStatus.REJECTED if step.stage == "validate" else MutationStatus.FAILED
        rec = make_failure_record(
            form_id=self.form_id,
            kind=step.kind,
            stage=step.stage,
            error=error,
            diverged=step.diverged,
            field_id=step.field_id,
            field_key=step.field_key,
            section=step.section,
            index=step.index,
        )
        self.failures.append(rec)
        if step.diverged:
            self.diverged = True
            self.session.counters.inc("coord.persist_failures")
        self.session.counters.inc(f"coord.{step.kind}.{status.value}")
        self.session.emit_signal(
            Cat.COORD,
            f"{step.kind} {status.value} at {step.stage}: {describe_failure(rec)}",
            level="warning",
            form=self.form_id,
            fid=step.field_id,
            key=step.field_key,
            sec=step.section,
            idx=step.index,
            diverged=step.diverged or None,
        )
        return MutationOutcome(
            status=status, kind=step.kind, field_id=step.field_id, position=step.position(), failure=rec
        )

    async def _persist_order(self, step: _Step) -> None:
        """REORDER with the complete order. The store is already changed, so failures diverge."""
        step.stage = "persist_order"
        step.diverged = True
        order = self.store.order()
        if order:
            await self.api.reorder(self.form_id, order)
        step.diverged = False

    def _select(self, field: FormField) -> None:
        self.view.active_section = field.section
        self.view.selected_field_id = field.id

    # ------------------------------------------------------------------
    # load / reload
    # ------------------------------------------------------------------

    async def reload(self) -> MutationOutcome:
        """
        Replace the store with the server's truth. The only reconciliation path:
        clears `diverged` and keeps the selection if that field still exists.
        """
        step = _Step("reload")
        try:
            self._check_attached()
            if self.busy:
                raise BuilderBusyError("A change is still being saved; reload refused.")
            with phase_timer(self.session, "reload", ctx={"form": self.form_id}):
                step.stage = "load"
                data = await self.api.load(self.form_id)
                if self.detached:
                    return self._discarded(step)
                snap = build_lists_from_payload(
                    data, contact_keys=self.policy.contact_keys, session=self.session
                )
                self.store.contact_first = snap.contact_first
                self.store.commit(snap.lists, reason="reload")
        except BuilderError as e:
            return self._failed(step, e)

        self.form = snap.form
        self.diverged = False
        if not self._loaded:
            self.view.active_section = snap.form.settings.start_screen
            self._loaded = True
        if self.view.selected_field_id and self.store.get(self.view.selected_field_id) is None:
            self.view.selected_field_id = None
        return self._applied(step)

    # ------------------------------------------------------------------
    # view
    # ------------------------------------------------------------------

    def select_field(self, field_id: Optional[str]) -> bool:
        if field_id is None:
            self.view.selected_field_id = None
            return True
        f = self.store.get(field_id)
        if f is None:
            return False
        self._select(f)
        return True

    def set_active_section(self, section: FieldSection) -> None:
        self.view.active_section = section

    def detach(self) -> None:
        """The builder is going away; in-flight results must not touch the store."""
        self.detached = True
        self.session.emit_diag(Cat.COORD, "Coordinator detached", form=self.form_id, busy=self.busy)

    # ------------------------------------------------------------------
    # add
    # ------------------------------------------------------------------

    async def add_at_drop(
        self, item: Union[LibraryItem, str], dragged: Rect, target: DropTarget
    ) -> MutationOutcome:
        pos = self.resolver.resolve(self.store.lists, dragged, target, kind=DragKind.LIBRARY_ITEM)
        if pos is None:
            return MutationOutcome(status=MutationStatus.NOOP, kind="add")
        return await self.add_from_library(item, pos.section, pos.index)

    async def add_from_library(
        self,
        item: Union[LibraryItem, str],
        section: Optional[FieldSection] = None,
        index: Optional[int] = None,
        *,
        label: Optional[str] = None,
    ) -> MutationOutcome:
        """
        Add a library item at (section, index); None means "end of the item's section".

        Contact items and templates that name a section keep their section. When
        that differs from the drop section the new field is appended to it. Other
        items land at the drop position.
        """
        step = _Step("add")
        try:
            self._check_attached()
            with self._structural("add"):
                lib_item = self._lookup_item(item)
                plan = self.policy.plan_add(lib_item, self.store.lists, label=label, drop_section=section)

                if isinstance(plan, SelectExisting):
                    existing = self.store.get(plan.field_id)
                    step.field_id, step.field_key = plan.field_id, lib_item.key
                    step.at(*self.store.locate(plan.field_id))
                    self._select(existing)
                    # contact keys always bring the contact view forward
                    self.view.active_section = FieldSection.CONTACT
                    return self._applied(step, MutationStatus.SELECTED_EXISTING)

                dst = plan.section
                dst_len = len(self.store.section(dst))
                if section is None or section is not dst or index is None:
                    index = dst_len
                step.field_key = plan.field.key
                step.at(dst, clamp_index(index, dst_len))

                with phase_timer(self.session, "add", ctx={"form": self.form_id, "key": plan.field.key}):
                    step.stage = "create"
                    created = await self.api.create_field(self.form_id, plan.field)
                    step.field_id = created.id
                    if self.detached:
                        return self._discarded(step)
                    if created.section is not dst:
                        created = created.moved_to(dst)

                    step.stage = "local_insert"
                    step.diverged = True
                    # index may have shifted if a reload landed while create was in flight
                    step.at(dst, clamp_index(step.index, len(self.store.section(dst))))
                    self.store.commit(
                        self.store.insert_at(dst, step.index, created), reason="add"
                    )
                    self._select(created)

                    await self._persist_order(step)
                    if self.detached:
                        return self._discarded(step)
        except BuilderError as e:
            return self._failed(step, e)

        return self._applied(step)

    def _lookup_item(self, item: Union[LibraryItem, str]) -> LibraryItem:
        if isinstance(item, LibraryItem):
            return item
        found = self.catalog.get(item)
        if found is None:
            raise ValidationError(f"Unknown library item {item!r}.", code="UNKNOWN_ITEM")
        return found

    # ------------------------------------------------------------------
    # move
    # ------------------------------------------------------------------

    async def move_field(self, field_id: str, dragged: Rect, target: DropTarget) -> MutationOutcome:
        pos = self.resolver.resolve(self.store.lists, dragged, target, kind=DragKind.EXISTING_FIELD)
        if pos is None:
            return MutationOutcome(status=MutationStatus.NOOP, kind="move", field_id=field_id)
        return await self.move_to(field_id, pos.section, pos.index)

    async def move_to(self, field_id: str, section: FieldSection, index: int) -> MutationOutcome:
        """
        Move an existing field so it lands before whatever currently sits at
        `index` in `section` (index == len appends). Same as the drop indicator.
        """
        step = _Step("move", field_id=field_id)
        try:
            self._check_attached()
            with self._structural("move"):
                field = self._require_field(field_id)
                step.field_key = field.key
                src, src_idx = self.store.locate(field_id)

                if src is section:
                    dst_idx = clamp_index(index, len(self.store.section(section)))
                    if src_idx < dst_idx:
                        dst_idx -= 1  # insertion point counted the field itself
                    step.at(section, dst_idx)
                    if dst_idx == src_idx:
                        return self._applied(step, MutationStatus.NOOP)

                    with phase_timer(self.session, "move", ctx={"form": self.form_id, "fid": field_id}):
                        self.store.commit(self.store.move_within(section, src_idx, dst_idx), reason="move")
                        await self._persist_order(step)
                else:
                    await self._move_across(step, field, src, section, index)

                if self.detached:
                    return self._discarded(step)
        except BuilderError as e:
            return self._failed(step, e)

        return self._applied(step)

    async def _move_across(
        self, step: _Step, field: FormField, src: FieldSection, dst: FieldSection, index: int
    ) -> None:
        clash = next(
            (f for f in self.store.section(dst) if f.key == field.key and f.id != field.id), None
        )
        if clash is not None:
            raise ValidationError(
                f"{dst.value} already has a field with key {field.key!r}.", code="CONTACT_DUPLICATE"
            )

        moved = field.moved_to(dst)
        lists = self.store.remove_from(src, field.id)
        dst_idx = clamp_index(index, len(lists.of(dst)))
        lists = self.store.insert_at(dst, dst_idx, moved, base=lists)
        step.at(dst, dst_idx)

        with phase_timer(self.session, "move_section", ctx={"form": self.form_id, "fid": field.id, "sec": dst}):
            self.store.commit(lists, reason="move_section")
            step.diverged = True
            step.stage = "patch_section"
            await self.api.patch_field(
                self.form_id, field.id, {"config": config_to_wire(moved.config)}, section_fallback=dst
            )
            await self._persist_order(step)

    def _require_field(self, field_id: str) -> FormField:
        f = self.store.get(field_id)
        if f is None:
            raise ValidationError(f"Field {field_id} is not on this form.", code="UNKNOWN_FIELD")
        return f

    # ------------------------------------------------------------------
    # duplicate / delete
    # ------------------------------------------------------------------

    async def duplicate_field(self, field_id: str) -> MutationOutcome:
        """Server copies the field under a fresh key; the copy goes to the end of the source's section."""
        step = _Step("duplicate")
        try:
            self._check_attached()
            with self._structural("duplicate"):
                source = self._require_field(field_id)
                if self.policy.is_contact_key(source.key):
                    raise ValidationError(
                        f"Contact field {source.key!r} can exist only once.", code="CONTACT_DUPLICATE"
                    )
                section = source.section

                with phase_timer(self.session, "duplicate", ctx={"form": self.form_id, "fid": field_id}):
                    step.stage = "duplicate"
                    copy = await self.api.duplicate_field(self.form_id, field_id, section_fallback=section)
                    step.field_id, step.field_key = copy.id, copy.key
                    if self.detached:
                        return self._discarded(step)
                    if copy.section is not section:
                        copy = copy.moved_to(section)

                    step.stage = "local_insert"
                    step.diverged = True
                    step.at(section, len(self.store.section(section)))
                    self.store.commit(self.store.insert_at(section, step.index, copy), reason="duplicate")
                    self._select(copy)

                    await self._persist_order(step)
                    if self.detached:
                        return self._discarded(step)
        except BuilderError as e:
            return self._failed(step, e)

        return self._applied(step)

    async def delete_field(self, field_id: str) -> MutationOutcome:
        step = _Step("delete", field_id=field_id)
        try:
            self._check_attached()
            with self._structural("delete"):
                field = self._require_field(field_id)
                step.field_key = field.key
                step.at(*self.store.locate(field_id))
                if field.is_system:
                    raise ValidationError(f"{field.label!r} is a system field and can't be deleted.",
                                          code="SYSTEM_FIELD")

                with phase_timer(self.session, "delete", ctx={"form": self.form_id, "fid": field_id}):
                    self.store.commit(self.store.remove_from(field.section, field_id), reason="delete")
                    if self.view.selected_field_id == field_id:
                        self.view.selected_field_id = None

                    step.stage = "delete"
                    step.diverged = True
                    await self.api.delete_field(self.form_id, field_id)
                    step.diverged = False
                    if self.detached:
                        return self._discarded(step)
        except BuilderError as e:
            return self._failed(step, e)

        return self._applied(step)

    # ------------------------------------------------------------------
    # patches
    # ------------------------------------------------------------------

    async def patch_field(self, field_id: str, patch: Mapping[str, Any]) -> MutationOutcome:
        """
        Edit label / key / flags / config. Checked locally first (key uniqueness,
        contact keys are fixed, config validity). Not optimistic: the store takes
        the server's version of the field.

        A change of config.section is carried out as a move to the end of the
        destination section, after the rest of the patch has been saved.
        """
        step = _Step("patch_field", field_id=field_id)
        try:
            self._check_attached()
            field = self._require_field(field_id)
            step.field_key = field.key
            wire, target_section = self._validate_field_patch(field, patch)
        except BuilderError as e:
            return self._failed(step, e)

        if not wire and target_section is field.section:
            step.at(*self.store.locate(field_id))
            return self._applied(step, MutationStatus.NOOP)

        if wire:
            try:
                with phase_timer(self.session, "patch_field", ctx={"form": self.form_id, "fid": field_id}):
                    step.stage = "patch_field"
                    updated = await self.api.patch_field(
                        self.form_id, field_id, wire, section_fallback=field.section
                    )
                    if self.detached:
                        return self._discarded(step)
                    self._replace_field(field_id, updated)
                    step.field_key = updated.key
            except BuilderError as e:
                return self._failed(step, e)

        if target_section is not field.section:
            outcome = await self.move_to(field_id, target_section, len(self.store.section(target_section)))
            return replace(outcome, kind="patch_field")

        step.at(*self.store.locate(field_id))
        return self._applied(step)

    def _validate_field_patch(
        self, field: FormField, patch: Mapping[str, Any]
    ) -> tuple[dict[str, Any], FieldSection]:
        unknown = set(patch) - config.PATCHABLE_FIELD_KEYS
        if unknown:
            raise ValidationError(f"Unsupported field properties: {sorted(unknown)}", code="INVALID_PATCH")

        wire = dict(patch)
        if "key" in wire:
            key = str(wire["key"] or "").strip()
            if key == field.key:
                wire.pop("key")
            else:
                if self.policy.is_contact_key(field.key):
                    raise ValidationError(f"Contact field key {field.key!r} can't be changed.",
                                          code="CONTACT_KEY_FIXED")
                self.policy.ensure_key_available(key, self.store.lists, field_id=field.id)
                wire["key"] = key

        if "label" in wire:
            label = str(wire["label"] or "").strip()
            if not label:
                raise ValidationError("Label must not be empty.", code="INVALID_LABEL")
            wire["label"] = label

        target_section = field.section
        if "config" in wire:
            cfg = merge_config_patch(field.type, field.config, wire["config"], strict=True)
            target_section = cfg.section
            # the section part goes through move_to
            wire["config"] = config_to_wire(with_section(field.type, cfg, field.section))
            if wire["config"] == config_to_wire(field.config):
                wire.pop("config")

        return wire, target_section

    def _replace_field(self, field_id: str, updated: FormField) -> None:
        loc = self.store.locate(field_id)
        if loc is None:
            return
        section, idx = loc
        if updated.section is not section:
            updated = updated.moved_to(section)
        items = list(self.store.section(section))
        items[idx] = updated
        self.store.commit(self.store.lists.with_section(section, items), reason="patch_field")

    async def patch_form(self, patch: Mapping[str, Any]) -> MutationOutcome:
        """Name / status / description / config of the form itself."""
        step = _Step("patch_form")
        try:
            self._check_attached()
            wire = self._validate_form_patch(patch)
            with phase_timer(self.session, "patch_form", ctx={"form": self.form_id}):
                step.stage = "patch_form"
                await self.api.patch_form(self.form_id, wire)
            if self.detached:
                return self._discarded(step)
        except BuilderError as e:
            return self._failed(step, e)

        if self.form is not None:
            self.form = replace(
                self.form,
                name=wire.get("name", self.form.name),
                status=FormStatus(wire["status"]) if "status" in wire else self.form.status,
                description=wire.get("description", self.form.description),
                config=dict(wire["config"] or {}) if "config" in wire else self.form.config,
            )
        return self._applied(step)

    def _validate_form_patch(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(patch) - config.PATCHABLE_FORM_KEYS
        if unknown:
            raise ValidationError(f"Unsupported form properties: {sorted(unknown)}", code="INVALID_PATCH")
        wire = dict(patch)
        if "name" in wire:
            name = str(wire["name"] or "").strip()
            if not name:
                raise ValidationError("Form name must not be empty.", code="INVALID_NAME")
            wire["name"] = name
        if "status" in wire:
            status = str(wire["status"] or "").strip().upper()
            if status not in FormStatus.__members__:
                raise ValidationError(f"Unknown form status {wire['status']!r}.", code="INVALID_STATUS")
            wire["status"] = status
        if "config" in wire and wire["config"] is not None and not isinstance(wire["config"], Mapping):
            raise ValidationError("Form config must be an object.", code="INVALID_CONFIG")
        return wire
