from dataclasses import dataclass
from enum import Enum


class FieldType(str, Enum):
    TEXT = "TEXT"
    TEXTAREA = "TEXTAREA"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    CHECKBOX = "CHECKBOX"
    SINGLE_SELECT = "SINGLE_SELECT"
    MULTI_SELECT = "MULTI_SELECT"
    RATING = "RATING"
    YESNO = "YESNO"


@dataclass(frozen=True)
class FieldTypeSpec:
    type: FieldType
    display_name: str             # label shown in the library / type picker
    hint: str                     # one-liner under the library card
    config_family: str            # "text" | "choice" | "checkbox" | "rating"; picks the config class
    variants: tuple[str, ...]     # presentation variants allowed in config.variant
    requires_options: bool        # True if config.options must be non-empty

FIELD_TYPES: dict[FieldType, FieldTypeSpec] = {
    # TEXT carries the presets (date, datetime, attachment, audio) via config.variant
    FieldType.TEXT: FieldTypeSpec(
        type=FieldType.TEXT,
        display_name="Text",
        hint="Single line input",
        config_family="text",
        variants=("default", "date", "datetime", "attachment", "audio"),
        requires_options=False,
    ),
    FieldType.TEXTAREA: FieldTypeSpec(
        type=FieldType.TEXTAREA,
        display_name="Textarea",
        hint="Multi-line input",
        config_family="text",
        variants=("default",),
        requires_options=False,
    ),
    FieldType.EMAIL: FieldTypeSpec(
        type=FieldType.EMAIL,
        display_name="Email",
        hint="Validated email",
        config_family="text",
        variants=("default",),
        requires_options=False,
    ),
    FieldType.PHONE: FieldTypeSpec(
        type=FieldType.PHONE,
        display_name="Phone",
        hint="Phone number",
        config_family="text",
        variants=("default",),
        requires_options=False,
    ),
    FieldType.CHECKBOX: FieldTypeSpec(
        type=FieldType.CHECKBOX,
        display_name="Checkbox",
        hint="Yes / No",
        config_family="checkbox",
        variants=("default",),
        requires_options=False,
    ),
    FieldType.SINGLE_SELECT: FieldTypeSpec(
        type=FieldType.SINGLE_SELECT,
        display_name="Select (single)",
        hint="One option",
        config_family="choice",
        variants=("default",),
        requires_options=True,
    ),
    FieldType.MULTI_SELECT: FieldTypeSpec(
        type=FieldType.MULTI_SELECT,
        display_name="Select (multi)",
        hint="Multiple options",
        config_family="choice",
        variants=("default",),
        requires_options=True,
    ),
    FieldType.RATING: FieldTypeSpec(
        type=FieldType.RATING,
        display_name="Rating",
        hint="Stars",
        config_family="rating",
        variants=("default",),
        requires_options=False,
    ),
    FieldType.YESNO: FieldTypeSpec(
        type=FieldType.YESNO,
        display_name="Yes / No",
        hint="Two options",
        config_family="choice",
        variants=("default",),
        requires_options=True,
    ),
}


def parse_field_type(raw: object) -> FieldType | None:
    if isinstance(raw, FieldType):
        return raw
    if isinstance(raw, str):
        try:
            return FieldType(raw.strip().upper())
        except ValueError:
            return None
    return None


def field_type_label(t: FieldType | str) -> str:
    ft = parse_field_type(t)
    if ft is None:
        return str(t or "—")
    return FIELD_TYPES[ft].display_name
