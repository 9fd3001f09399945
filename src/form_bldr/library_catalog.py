# src/form_bldr/library_catalog.py

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml

from .field_types import FIELD_TYPES, FieldType, parse_field_type
from .types import FieldSection

LibraryKind = Literal["generic", "contact", "preset"]

DEFAULT_LIBRARY_PATH = Path(__file__).with_name("library.yml")


@dataclass(frozen=True)
class LibraryItem:
    """
    A template the user can drag onto the canvas.

    - generic: one per field type, label/key derived from the title
    - contact: fixed `key` (firstName, email, ...), always lands in CONTACT
    - preset:  a generic type with canned config (date picker, audio note, ...)
    """
    id: str
    kind: LibraryKind
    type: FieldType
    title: str
    hint: Optional[str] = None
    key: Optional[str] = None            # fixed for contact items, slug base otherwise
    label: Optional[str] = None          # label of the created field; defaults to title
    section: Optional[FieldSection] = None
    required: bool = False
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_contact(self) -> bool:
        return self.kind == "contact"

    @property
    def field_label(self) -> str:
        return self.label or self.title

    @property
    def key_base(self) -> str:
        return self.key or self.field_label


class LibraryCatalog:
    """
    Read YAML/JSON library files (or folders) into LibraryItems.

    Only parses data; no network, no store access.
    """

    def __init__(self, items: List[LibraryItem], *, logger=None):
        self.logger = logger
        self._items: Dict[str, LibraryItem] = {}
        for it in items:
            if it.id in self._items:
                raise ValueError(f"Duplicate library item id: {it.id!r}")
            self._items[it.id] = it

    # ---------- public API ----------

    @classmethod
    def default(cls, *, logger=None) -> "LibraryCatalog":
        return cls.read_path(DEFAULT_LIBRARY_PATH, logger=logger)

    @classmethod
    def read_path(cls, path: Union[str, Path], *, logger=None) -> "LibraryCatalog":
        """
        Read a single file OR a directory.

        - If it's a file: parse YAML/JSON and return its items.
        - If it's a directory: read all *.yml/*.yaml/*.json in it (non-recursive, sorted by name).
        """
        p = Path(path)
        if p.is_dir():
            files = sorted(
                f for ext in ("*.yml", "*.yaml", "*.json") for f in p.glob(ext)
            )
        elif p.is_file():
            files = [p]
        else:
            raise FileNotFoundError(f"Library path not found: {p}")

        items: List[LibraryItem] = []
        for f in files:
            if logger:
                logger.info("Reading library file: %s", f)
            items.extend(_items_from_raw(_load_raw(f), source=f))

        if logger:
            logger.info("Loaded %d library item(s) from %s", len(items), p)
        return cls(items, logger=logger)

    def __iter__(self):
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def get(self, item_id: str) -> Optional[LibraryItem]:
        return self._items.get(item_id)

    def require(self, item_id: str) -> LibraryItem:
        it = self._items.get(item_id)
        if it is None:
            raise KeyError(f"Unknown library item: {item_id!r}")
        return it

    def by_kind(self, kind: LibraryKind) -> List[LibraryItem]:
        return [it for it in self._items.values() if it.kind == kind]

    def contact_keys(self) -> frozenset[str]:
        return frozenset(it.key for it in self._items.values() if it.is_contact and it.key)

    def contact_item_for_key(self, key: str) -> Optional[LibraryItem]:
        return next((it for it in self.by_kind("contact") if it.key == key), None)


# ---------- internal helpers ----------

def _load_raw(file_path: Path) -> Any:
    suffix = file_path.suffix.lower()
    with file_path.open("r", encoding="utf-8") as f:
        if suffix in (".yml", ".yaml"):
            return yaml.safe_load(f)
        elif suffix == ".json":
            return json.load(f)
        else:
            raise ValueError(f"Unsupported library file extension: {suffix}")


def _items_from_raw(data: Any, *, source: Path) -> List[LibraryItem]:
    if isinstance(data, dict):
        data = data.get("items") or []
    if not isinstance(data, list):
        raise ValueError(f"{source}: expected a list of items or a mapping with 'items'")
    return [_item_from_dict(raw, source=source) for raw in data]


def _item_from_dict(raw: Any, *, source: Path) -> LibraryItem:
    if not isinstance(raw, dict):
        raise ValueError(f"{source}: library entry is not a mapping: {raw!r}")

    item_id = str(raw.get("id") or "").strip()
    kind = str(raw.get("kind") or "generic").strip().lower()
    field_type = parse_field_type(raw.get("type"))

    if not item_id:
        raise ValueError(f"{source}: library entry without id: {raw!r}")
    if kind not in ("generic", "contact", "preset"):
        raise ValueError(f"{source}: {item_id}: unknown kind {kind!r}")
    if field_type is None:
        raise ValueError(f"{source}: {item_id}: unknown field type {raw.get('type')!r}")

    key = raw.get("key")
    key = str(key).strip() if key else None
    if kind == "contact" and not key:
        raise ValueError(f"{source}: {item_id}: contact items need a fixed key")

    section = FieldSection.parse(raw.get("section"))
    if kind == "contact":
        section = FieldSection.CONTACT

    cfg = raw.get("config")
    return LibraryItem(
        id=item_id,
        kind=kind,  # type: ignore[arg-type]
        type=field_type,
        title=str(raw.get("title") or FIELD_TYPES[field_type].display_name),
        hint=raw.get("hint") or FIELD_TYPES[field_type].hint,
        key=key,
        label=raw.get("label"),
        section=section,
        required=bool(raw.get("required", False)),
        placeholder=raw.get("placeholder"),
        help_text=raw.get("helpText"),
        config=dict(cfg) if isinstance(cfg, dict) else {},
    )
