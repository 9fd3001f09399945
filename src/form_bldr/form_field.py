# src/form_bldr/form_field.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from .config_builder import build_field_config, config_to_wire, with_section
from .errors import BadResponseError
from .field_configs import BaseFieldConfig, ContactPolicy
from .field_types import FieldType, parse_field_type
from .types import CreateFieldBody, FieldSection, FieldWire, FormStatus
from .. import config


@dataclass(frozen=True)
class FormField:
    """
    One field of a form, as held by the builder.

    `section` always equals `config.section`; use `moved_to()` to change both.
    `sort_order` is a materialization of the list position and is rewritten
    on every store commit.
    """
    id: str                 # server-assigned, stable
    key: str                # unique across the whole form
    label: str
    type: FieldType
    config: BaseFieldConfig
    required: bool = False
    is_active: bool = True
    sort_order: int = 0
    placeholder: Optional[str] = None
    help_text: Optional[str] = None

    @property
    def section(self) -> FieldSection:
        return self.config.section

    @property
    def is_system(self) -> bool:
        return config.SYSTEM_FIELD_MARKER in (self.label or "").lower()

    def moved_to(self, section: FieldSection) -> "FormField":
        return replace(self, config=with_section(self.type, self.config, section))

    @classmethod
    def from_wire(cls, raw: Any, *, section_fallback: FieldSection | None = None) -> "FormField":
        if not isinstance(raw, Mapping):
            raise BadResponseError(f"Field payload is not an object: {raw!r}")

        field_id = str(raw.get("id") or "").strip()
        key = str(raw.get("key") or "").strip()
        field_type = parse_field_type(raw.get("type"))
        if not field_id or not key or field_type is None:
            raise BadResponseError(
                f"Field payload missing id/key/type (id={raw.get('id')!r}, key={raw.get('key')!r}, "
                f"type={raw.get('type')!r})"
            )

        sort_order = raw.get("sortOrder")
        return cls(
            id=field_id,
            key=key,
            label=str(raw.get("label") or ""),
            type=field_type,
            config=build_field_config(
                field_type, raw.get("config"), section_fallback=section_fallback, strict=False
            ),
            required=bool(raw.get("required", False)),
            is_active=bool(raw.get("isActive", True)),
            sort_order=sort_order if isinstance(sort_order, int) else 0,
            placeholder=raw.get("placeholder"),
            help_text=raw.get("helpText"),
        )

    def to_wire(self) -> FieldWire:
        return {
            "id": self.id,
            "key": self.key,
            "label": self.label,
            "type": self.type.value,
            "required": self.required,
            "isActive": self.is_active,
            "sortOrder": self.sort_order,
            "placeholder": self.placeholder,
            "helpText": self.help_text,
            "config": config_to_wire(self.config),
        }


@dataclass(frozen=True)
class NewField:
    """A field that doesn't exist server-side yet (the body of the create call)."""
    key: str
    label: str
    type: FieldType
    config: BaseFieldConfig
    required: bool = False
    is_active: bool = True
    placeholder: Optional[str] = None
    help_text: Optional[str] = None

    @property
    def section(self) -> FieldSection:
        return self.config.section

    def to_create_body(self) -> CreateFieldBody:
        return {
            "key": self.key,
            "label": self.label,
            "type": self.type.value,
            "required": self.required,
            "isActive": self.is_active,
            "placeholder": self.placeholder,
            "helpText": self.help_text,
            "config": config_to_wire(self.config),
        }


@dataclass(frozen=True)
class CaptureModes:
    business_card: bool = True
    qr: bool = True
    contacts: bool = True
    manual: bool = True


@dataclass(frozen=True)
class FormSettings:
    """Read-only view of form.config. The builder consumes these, it never computes them."""
    start_screen: FieldSection = FieldSection.FORM
    contact_policy: ContactPolicy = "NONE"
    capture_modes: CaptureModes = field(default_factory=CaptureModes)

    @classmethod
    def from_config(cls, raw: Any) -> "FormSettings":
        cfg = dict(raw) if isinstance(raw, Mapping) else {}

        start = FieldSection.FORM
        if cfg.get("captureStart") == "CONTACT_FIRST":
            start = FieldSection.CONTACT
        elif FieldSection.parse(cfg.get("startScreen")) is FieldSection.CONTACT:
            start = FieldSection.CONTACT

        policy = cfg.get("contactPolicy")
        if policy not in ("NONE", "EMAIL_OR_PHONE", "EMAIL", "PHONE"):
            policy = "NONE"

        modes_raw = cfg.get("captureModes")
        modes = CaptureModes()
        if isinstance(modes_raw, Mapping):
            def _pick(k: str, default: bool) -> bool:
                v = modes_raw.get(k)
                return v if isinstance(v, bool) else default

            modes = CaptureModes(
                business_card=_pick("businessCard", True),
                qr=_pick("qr", True),
                contacts=_pick("contacts", True),
                manual=_pick("manual", True),
            )

        return cls(start_screen=start, contact_policy=policy, capture_modes=modes)


@dataclass(frozen=True)
class BuilderForm:
    id: str
    name: str
    status: FormStatus
    description: Optional[str] = None
    config: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def settings(self) -> FormSettings:
        return FormSettings.from_config(self.config)

    @classmethod
    def from_wire(cls, raw: Any) -> "BuilderForm":
        if not isinstance(raw, Mapping) or not raw.get("id"):
            raise BadResponseError(f"Form payload missing id: {raw!r}")
        try:
            status = FormStatus(str(raw.get("status") or "DRAFT").upper())
        except ValueError:
            raise BadResponseError(f"Unknown form status {raw.get('status')!r}") from None
        cfg = raw.get("config")
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or ""),
            status=status,
            description=raw.get("description"),
            config=dict(cfg) if isinstance(cfg, Mapping) else {},
        )
