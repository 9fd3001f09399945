import json
from pathlib import Path
from typing import Any

import yaml

from .field_store import FieldStore
from .instrumentation import Cat
from .session import BuilderSession


def dump_store_snapshot(
    store: FieldStore,
    out_path: Path,
    *,
    logger=None,
    session: BuilderSession | None = None,
) -> bool:
    """
    Write store.snapshot() to `out_path`: YAML for .yml/.yaml, JSON otherwise.
    Returns False (and logs a warning) if the file couldn't be written.
    """
    def _emit(level: str, msg: str, **ctx: Any) -> None:
        if session:
            session.emit_signal(Cat.STORE, msg, level=level, **ctx)
            return
        if logger:
            getattr(logger, level, logger.info)(msg)

    payload = store.snapshot()
    if out_path.suffix.lower() in (".yml", ".yaml"):
        text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)

    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
    except OSError as e:
        _emit("warning", f"Could not write store dump. Message: {e!r}")
        return False

    _emit("info", f"Wrote store dump to: {out_path}")
    return True
