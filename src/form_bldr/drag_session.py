from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from .coordinator import ReorderCoordinator
from .drop_resolver import DropTarget, Rect
from .errors import DragStateError
from .instrumentation import Cat
from .library_catalog import LibraryItem
from .types import DragKind, DropPosition, MutationOutcome, MutationStatus


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING_LIBRARY_ITEM = "dragging_library_item"
    DRAGGING_FIELD = "dragging_field"


class DragSession:
    """
    One pointer interaction, independent of any UI toolkit.

        idle --start_*--> dragging --move*--> dragging --end--> idle   (one coordinator call)
                                          \\--cancel--> idle             (nothing happens)

    move() only recomputes the drop indicator; it never touches the store or the network.
    """

    def __init__(self, coordinator: ReorderCoordinator):
        self.coordinator = coordinator
        self.session = coordinator.session
        self.state = DragState.IDLE
        self.item: Optional[LibraryItem] = None
        self.field_id: Optional[str] = None
        self.indicator: Optional[DropPosition] = None

    @property
    def kind(self) -> Optional[DragKind]:
        if self.state is DragState.DRAGGING_LIBRARY_ITEM:
            return DragKind.LIBRARY_ITEM
        if self.state is DragState.DRAGGING_FIELD:
            return DragKind.EXISTING_FIELD
        return None

    def _require_idle(self, action: str) -> None:
        if self.state is not DragState.IDLE:
            raise DragStateError(f"{action}: a drag is already in progress ({self.state.value})")

    def _require_dragging(self, action: str) -> DragKind:
        kind = self.kind
        if kind is None:
            raise DragStateError(f"{action}: no drag in progress")
        return kind

    def _reset(self) -> None:
        self.state = DragState.IDLE
        self.item = None
        self.field_id = None
        self.indicator = None

    def start_library(self, item: Union[LibraryItem, str]) -> None:
        self._require_idle("start_library")
        if isinstance(item, str):
            found = self.coordinator.catalog.get(item)
            if found is None:
                raise DragStateError(f"start_library: unknown library item {item!r}")
            item = found
        self.item = item
        self.state = DragState.DRAGGING_LIBRARY_ITEM
        self.session.emit_diag(Cat.DRAG, "Drag started", kind=DragKind.LIBRARY_ITEM, item=item.id)

    def start_field(self, field_id: str) -> None:
        self._require_idle("start_field")
        if self.coordinator.store.get(field_id) is None:
            raise DragStateError(f"start_field: field {field_id} is not on this form")
        self.field_id = field_id
        self.state = DragState.DRAGGING_FIELD
        self.session.emit_diag(Cat.DRAG, "Drag started", kind=DragKind.EXISTING_FIELD, fid=field_id)

    def move(self, dragged: Rect, target: Optional[DropTarget]) -> Optional[DropPosition]:
        kind = self._require_dragging("move")
        if target is None:
            self.indicator = None
        else:
            self.indicator = self.coordinator.resolver.resolve(
                self.coordinator.store.lists, dragged, target, kind=kind
            )
        return self.indicator

    async def end(self, dragged: Rect, target: Optional[DropTarget]) -> MutationOutcome:
        """Commit the drop. Dropping outside any target behaves like cancel()."""
        kind = self._require_dragging("end")
        item, field_id = self.item, self.field_id
        self._reset()

        if target is None:
            self.session.emit_diag(Cat.DRAG, "Dropped outside any target", kind=kind)
            return MutationOutcome(
                status=MutationStatus.NOOP,
                kind="add" if kind is DragKind.LIBRARY_ITEM else "move",
                field_id=field_id,
            )

        self.session.counters.inc("drag.commits")
        if kind is DragKind.LIBRARY_ITEM:
            return await self.coordinator.add_at_drop(item, dragged, target)
        return await self.coordinator.move_field(field_id, dragged, target)

    def cancel(self) -> None:
        kind = self._require_dragging("cancel")
        self._reset()
        self.session.counters.inc("drag.cancels")
        self.session.emit_diag(Cat.DRAG, "Drag cancelled", kind=kind)
