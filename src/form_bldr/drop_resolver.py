from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .field_store import SectionLists, clamp_index
from .instrumentation import Cat
from .session import BuilderSession
from .types import DragKind, DropPosition, FieldSection
from .. import config


@dataclass(frozen=True)
class Rect:
    """Screen rectangle; y grows downwards."""
    x: float
    y: float
    width: float
    height: float

    @property
    def mid_y(self) -> float:
        return self.y + self.height / 2


@dataclass(frozen=True)
class SectionTarget:
    """Drop on the section itself (empty area / 'add to end' zone)."""
    section: FieldSection


@dataclass(frozen=True)
class FieldRowTarget:
    """Drop on an existing field row, with that row's rectangle at drop time."""
    field_id: str
    rect: Rect


DropTarget = Union[SectionTarget, FieldRowTarget]


class DropPositionResolver:
    """
    Turns (dragged rect, drop target) into an insertion point.

    Only relative geometry at drop time counts: dragged centre below the
    row's centre inserts after it, at-or-above inserts before it. The
    direction the pointer came from is irrelevant.
    """

    def __init__(self, session: BuilderSession | None = None):
        self._session = session

    def resolve(
        self,
        lists: SectionLists,
        dragged: Rect,
        target: DropTarget,
        *,
        kind: DragKind = DragKind.EXISTING_FIELD,
    ) -> Optional[DropPosition]:
        if isinstance(target, SectionTarget):
            pos = DropPosition(target.section, len(lists.of(target.section)))
            self._trace(kind, pos, target="section")
            return pos

        loc = lists.locate(target.field_id)
        if loc is None:
            # row vanished under the pointer (concurrent mutation / reload)
            if self._session:
                self._session.counters.inc("drop.stale_targets")
                self._session.emit_diag(Cat.DROP, "Drop target no longer exists", fid=target.field_id)
            return None

        section, row_index = loc
        index = row_index + 1 if dragged.mid_y > target.rect.mid_y else row_index
        pos = DropPosition(section, clamp_index(index, len(lists.of(section))))
        self._trace(kind, pos, target=target.field_id)
        return pos

    def _trace(self, kind: DragKind, pos: DropPosition, *, target: str) -> None:
        if self._session and config.INSTRUMENT_DROPS:
            self._session.emit_trace(
                Cat.DROP,
                "Drop indicator",
                key="DROP.indicator",
                sec=pos.section,
                idx=pos.index,
                kind=kind,
                target=target,
            )
