# src/form_bldr/context.py
from dataclasses import dataclass
import logging

import httpx

from .builder_api import BuilderAPI
from .coordinator import ReorderCoordinator
from .drag_session import DragSession
from .drop_resolver import DropPositionResolver
from .field_store import FieldStore
from .instrumentation import Cat
from .library_catalog import LibraryCatalog
from .section_policy import SectionAssignmentPolicy
from .session import BuilderSession
from .. import config


@dataclass
class AppContext:
    logger: logging.Logger
    session: BuilderSession
    api: BuilderAPI
    catalog: LibraryCatalog
    store: FieldStore
    policy: SectionAssignmentPolicy
    resolver: DropPositionResolver
    coordinator: ReorderCoordinator
    drag: DragSession

    async def close(self) -> None:
        self.coordinator.detach()
        await self.session.close()


def build_context(
    form_id: str,
    *,
    logger: logging.Logger | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    base_url: str | None = None,
    library_path: str | None = None,
    log_mode: str | None = None,
) -> AppContext:
    """Build shared components once for one form."""
    logger = logger or logging.getLogger("form_bldr")
    session = BuilderSession(logger, base_url=base_url, transport=transport, log_mode=log_mode)

    lib_path = library_path or config.LIBRARY_PATH
    catalog = LibraryCatalog.read_path(lib_path, logger=logger) if lib_path else LibraryCatalog.default()

    session.emit_signal(
        Cat.CONFIG,
        "Library catalog loaded",
        items=len(catalog),
        contact_keys=len(catalog.contact_keys()),
        source=lib_path or "default",
    )

    api = BuilderAPI(session)
    store = FieldStore(session=session)
    policy = SectionAssignmentPolicy(catalog.contact_keys(), session=session)
    resolver = DropPositionResolver(session)
    coordinator = ReorderCoordinator(
        api, form_id, catalog=catalog, store=store, policy=policy, resolver=resolver
    )
    return AppContext(
        logger=logger,
        session=session,
        api=api,
        catalog=catalog,
        store=store,
        policy=policy,
        resolver=resolver,
        coordinator=coordinator,
        drag=DragSession(coordinator),
    )
