# src/form_bldr/config_builder.py

from __future__ import annotations

from typing import Any, Dict, Mapping, Tuple, Type

from .errors import ValidationError
from .field_configs import (
    BaseFieldConfig,
    TextConfig,
    AttachmentConfig,
    AudioConfig,
    ChoiceConfig,
    CheckboxConfig,
    RatingConfig,
)
from .field_types import FIELD_TYPES, FieldType
from .types import FieldSection
from .. import config

# (config family, variant) -> config dataclass
CONFIG_CLASSES: Dict[Tuple[str, str], Type[BaseFieldConfig]] = {
    ("text", "default"): TextConfig,
    ("text", "date"): TextConfig,
    ("text", "datetime"): TextConfig,
    ("text", "attachment"): AttachmentConfig,
    ("text", "audio"): AudioConfig,
    ("choice", "default"): ChoiceConfig,
    ("checkbox", "default"): CheckboxConfig,
    ("rating", "default"): RatingConfig,
}

# Wire keys each class consumes; everything else lands in `extras`.
_CONSUMED: Dict[Type[BaseFieldConfig], set[str]] = {
    TextConfig: {"section", "variant"},
    AttachmentConfig: {"section", "variant", "attachment"},
    AudioConfig: {"section", "variant", "audio"},
    ChoiceConfig: {"section", "options"},
    CheckboxConfig: {"section", "defaultValue"},
    RatingConfig: {"section", "ratingMax"},
}


def _as_record(v: Any) -> dict[str, Any]:
    return dict(v) if isinstance(v, Mapping) else {}


def _clamp_int(raw: Any, bounds: tuple[int, int], default: int) -> int:
    lo, hi = bounds
    try:
        n = int(raw)
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, n))


def _clean_strings(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(s for s in (str(x).strip() for x in raw) if s)


def _resolve_variant(field_type: FieldType, raw_cfg: dict[str, Any], *, strict: bool) -> str:
    spec = FIELD_TYPES[field_type]
    raw_variant = raw_cfg.get("variant")
    variant = str(raw_variant).strip() if raw_variant not in (None, "") else "default"

    if variant in spec.variants:
        return variant
    if strict:
        raise ValidationError(
            f"Variant {variant!r} is not available for {field_type.value} fields.",
            code="INVALID_CONFIG",
        )
    return "default"


def config_class_for(field_type: FieldType, variant: str = "default") -> Type[BaseFieldConfig]:
    family = FIELD_TYPES[field_type].config_family
    cls = CONFIG_CLASSES.get((family, variant))
    if cls is None:
        raise ValidationError(
            f"No config layout for type={field_type.value!r}, variant={variant!r}",
            code="INVALID_CONFIG",
        )
    return cls


def build_field_config(
    field_type: FieldType,
    raw: Any,
    *,
    section_fallback: FieldSection | None = None,
    strict: bool = True,
) -> BaseFieldConfig:
    """
    Central factory: take a raw `config` JSON bag and return the matching
    config dataclass, validated once here so nobody downstream re-interprets it.

    - The (type, variant) pair picks the class.
    - Numeric knobs are clamped to the ranges the admin UI allows.
    - strict=True (create / patch): empty options on a choice type or an unknown
      variant raise ValidationError. strict=False (loading server data) tolerates both.
    """
    raw_cfg = _as_record(raw)
    spec = FIELD_TYPES[field_type]

    section = FieldSection.parse(raw_cfg.get("section")) or section_fallback or FieldSection.FORM
    variant = _resolve_variant(field_type, raw_cfg, strict=strict)
    ConfigClass = config_class_for(field_type, variant if spec.config_family == "text" else "default")

    extras = {k: v for k, v in raw_cfg.items() if k not in _CONSUMED[ConfigClass]}
    if spec.config_family != "text" and "variant" in raw_cfg:
        extras["variant"] = raw_cfg["variant"]

    if ConfigClass is TextConfig:
        return TextConfig(section=section, extras=extras, text_variant=variant)  # type: ignore[arg-type]

    if ConfigClass is AttachmentConfig:
        att = _as_record(raw_cfg.get("attachment"))
        accept = _clean_strings(att.get("accept")) or tuple(config.ATTACHMENT_ACCEPT_DEFAULT)
        return AttachmentConfig(
            section=section,
            extras=extras,
            accept=accept,
            max_files=_clamp_int(att.get("maxFiles"), config.ATTACHMENT_MAX_FILES_RANGE, 1),
        )

    if ConfigClass is AudioConfig:
        audio = _as_record(raw_cfg.get("audio"))
        return AudioConfig(
            section=section,
            extras=extras,
            max_duration_sec=_clamp_int(
                audio.get("maxDurationSec"), config.AUDIO_DURATION_RANGE_S, config.AUDIO_DURATION_DEFAULT_S
            ),
            allow_record=bool(audio.get("allowRecord", True)),
            allow_pick=bool(audio.get("allowPick", True)),
        )

    if ConfigClass is ChoiceConfig:
        options = _clean_strings(raw_cfg.get("options"))
        if strict and spec.requires_options and not options:
            raise ValidationError(
                f"{spec.display_name} needs at least one option.",
                code="EMPTY_OPTIONS",
            )
        return ChoiceConfig(section=section, extras=extras, options=options)

    if ConfigClass is CheckboxConfig:
        return CheckboxConfig(section=section, extras=extras, default_value=bool(raw_cfg.get("defaultValue", False)))

    return RatingConfig(
        section=section,
        extras=extras,
        rating_max=_clamp_int(raw_cfg.get("ratingMax"), config.RATING_MAX_RANGE, config.RATING_MAX_DEFAULT),
    )


def config_to_wire(cfg: BaseFieldConfig) -> dict[str, Any]:
    """Inverse of build_field_config: the JSON bag the builder endpoint stores."""
    out: dict[str, Any] = dict(cfg.extras)
    out["section"] = cfg.section.value

    if isinstance(cfg, TextConfig):
        if cfg.variant != "default":
            out["variant"] = cfg.variant
    elif isinstance(cfg, AttachmentConfig):
        out["variant"] = "attachment"
        out["attachment"] = {"accept": list(cfg.accept), "maxFiles": cfg.max_files}
    elif isinstance(cfg, AudioConfig):
        out["variant"] = "audio"
        out["audio"] = {
            "maxDurationSec": cfg.max_duration_sec,
            "allowRecord": cfg.allow_record,
            "allowPick": cfg.allow_pick,
        }
    elif isinstance(cfg, ChoiceConfig):
        out["options"] = list(cfg.options)
    elif isinstance(cfg, CheckboxConfig):
        out["defaultValue"] = cfg.default_value
    elif isinstance(cfg, RatingConfig):
        out["ratingMax"] = cfg.rating_max

    return out


def merge_config_patch(
    field_type: FieldType,
    current: BaseFieldConfig,
    patch: Any,
    *,
    strict: bool = True,
) -> BaseFieldConfig:
    """Shallow-merge a config patch over the current config (same as the settings modal does)."""
    merged = config_to_wire(current)
    merged.update(_as_record(patch))
    return build_field_config(field_type, merged, section_fallback=current.section, strict=strict)


def with_section(field_type: FieldType, cfg: BaseFieldConfig, section: FieldSection) -> BaseFieldConfig:
    wire = config_to_wire(cfg)
    wire["section"] = section.value
    return build_field_config(field_type, wire, section_fallback=section, strict=False)
