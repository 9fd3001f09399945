# src/form_bldr/field_configs.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from .types import FieldSection


# ---------------------------------------------------------------------------
# Common type aliases
# ---------------------------------------------------------------------------

TextVariant = Literal["default", "date", "datetime"]
ContactPolicy = Literal["NONE", "EMAIL_OR_PHONE", "EMAIL", "PHONE"]


# ---------------------------------------------------------------------------
# Base config (shared knobs)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BaseFieldConfig:
    """
    Common part of every field config.

    `extras` holds keys this client doesn't model. They round-trip untouched
    so a newer admin UI can store settings we don't know about.
    """
    section: FieldSection = FieldSection.FORM
    extras: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def variant(self) -> str:
        return "default"


# ---------------------------------------------------------------------------
# Text-like fields (TEXT, TEXTAREA, EMAIL, PHONE)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextConfig(BaseFieldConfig):
    """
    Plain input. TEXT may also present as a date or datetime picker.
    """
    text_variant: TextVariant = "default"

    @property
    def variant(self) -> str:
        return self.text_variant


@dataclass(frozen=True)
class AttachmentConfig(BaseFieldConfig):
    """
    TEXT + variant "attachment": the app picks a file or takes a photo.

    accept:
      - MIME types or wildcards, e.g. ("image/*", "application/pdf")
    max_files:
      - 1..5
    """
    accept: tuple[str, ...] = ("image/*", "application/pdf")
    max_files: int = 1

    @property
    def variant(self) -> str:
        return "attachment"


@dataclass(frozen=True)
class AudioConfig(BaseFieldConfig):
    """
    TEXT + variant "audio": voice note recorded in the app or picked from files.
    """
    max_duration_sec: int = 60
    allow_record: bool = True
    allow_pick: bool = True

    @property
    def variant(self) -> str:
        return "audio"


# ---------------------------------------------------------------------------
# Choice fields
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChoiceConfig(BaseFieldConfig):
    """
    SINGLE_SELECT / MULTI_SELECT / YESNO. Order of `options` is display order.
    """
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class CheckboxConfig(BaseFieldConfig):
    default_value: bool = False


@dataclass(frozen=True)
class RatingConfig(BaseFieldConfig):
    rating_max: int = 5
