# src/form_bldr/builder_api.py
from __future__ import annotations

from typing import Any, Mapping, Sequence
from urllib.parse import quote

from .errors import BadResponseError, ValidationError
from .form_field import FormField, NewField
from .instrumentation import Cat
from .session import BuilderSession
from .types import FieldSection
from .. import config


def _seg(v: str) -> str:
    return quote(str(v), safe="")


class BuilderAPI:
    """
    Client for the builder endpoints.

    GET   /forms/{id}/builder              -> {form, fields[]}
    PATCH /forms/{id}/builder  {op: ...}   -> one tagged operation per call
    POST  /forms/{id}/fields               -> created field

    Every method raises a BuilderError subclass on failure; nothing is retried.
    """

    def __init__(self, session: BuilderSession):
        self.session = session

    def _builder_path(self, form_id: str) -> str:
        return f"/forms/{_seg(form_id)}/builder"

    async def _op(self, form_id: str, op: str, **body: Any) -> Any:
        self.session.counters.inc(f"api.op.{op}")
        self.session.emit_diag(Cat.API, "Builder op", form=form_id, op=op, fid=body.get("fieldId"))
        return await self.session.request("PATCH", self._builder_path(form_id), json={"op": op, **body})

    # ---------- reads ----------

    async def load(self, form_id: str) -> Mapping[str, Any]:
        data = await self.session.request("GET", self._builder_path(form_id))
        if not isinstance(data, Mapping) or not isinstance(data.get("form"), Mapping) \
                or not isinstance(data.get("fields"), list):
            raise BadResponseError(
                "Builder payload must be {form, fields[]}.",
                trace_id=self.session.last_trace_id,
            )
        return data

    # ---------- field mutations ----------

    async def create_field(self, form_id: str, new_field: NewField) -> FormField:
        data = await self.session.request(
            "POST", f"/forms/{_seg(form_id)}/fields", json=new_field.to_create_body()
        )
        return FormField.from_wire(data, section_fallback=new_field.section)

    async def reorder(self, form_id: str, order: Sequence[str]) -> int:
        """Persist the complete field-id order. Returns the server's updated count."""
        data = await self._op(form_id, "REORDER", order=list(order))
        return int(data.get("updated", 0)) if isinstance(data, Mapping) else 0

    async def patch_field(
        self,
        form_id: str,
        field_id: str,
        patch: Mapping[str, Any],
        *,
        section_fallback: FieldSection | None = None,
    ) -> FormField:
        unknown = set(patch) - config.PATCHABLE_FIELD_KEYS
        if unknown:
            raise ValidationError(f"Field patch has unsupported keys: {sorted(unknown)}", code="INVALID_PATCH")
        data = await self._op(form_id, "PATCH_FIELD", fieldId=field_id, patch=dict(patch))
        return FormField.from_wire(data, section_fallback=section_fallback)

    async def duplicate_field(
        self, form_id: str, field_id: str, *, section_fallback: FieldSection | None = None
    ) -> FormField:
        data = await self._op(form_id, "DUPLICATE_FIELD", fieldId=field_id)
        return FormField.from_wire(data, section_fallback=section_fallback)

    async def delete_field(self, form_id: str, field_id: str) -> None:
        await self._op(form_id, "DELETE_FIELD", fieldId=field_id)

    # ---------- form ----------

    async def patch_form(self, form_id: str, patch: Mapping[str, Any]) -> None:
        unknown = set(patch) - config.PATCHABLE_FORM_KEYS
        if unknown:
            raise ValidationError(f"Form patch has unsupported keys: {sorted(unknown)}", code="INVALID_PATCH")
        await self._op(form_id, "PATCH_FORM", patch=dict(patch))
