import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

from . import config
from .form_bldr.context import build_context
from .form_bldr.failures import describe_failure
from .form_bldr.instrumentation import Cat
from .form_bldr.store_dump import dump_store_snapshot
from .form_bldr.types import FieldSection


async def run(
    form_id: str,
    *,
    logger: logging.Logger,
    dump: Optional[Path] = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    ctx = build_context(form_id, logger=logger, transport=transport)
    try:
        outcome = await ctx.coordinator.reload()
        if not outcome.ok:
            logger.error("Could not load form %s: %s", form_id, describe_failure(outcome.failure))
            return 1

        form = ctx.coordinator.form
        n_form, n_contact = ctx.store.stats()
        ctx.session.emit_signal(
            Cat.STARTUP,
            "Builder loaded",
            form=form_id,
            name=form.name,
            status=form.status,
            form_count=n_form,
            contact_count=n_contact,
        )

        print(f"{form.name} [{form.status.value}]  start screen: {form.settings.start_screen.value}")
        for section in (FieldSection.FORM, FieldSection.CONTACT):
            fields = ctx.store.section(section)
            print(f"  {section.value} ({len(fields)})")
            for f in fields:
                flags = " *" if f.required else ""
                flags += " (inactive)" if not f.is_active else ""
                print(f"    {f.sort_order:>3}  {f.key:<24} {f.type.value:<14} {f.label}{flags}")

        if dump is not None and not dump_store_snapshot(ctx.store, dump, session=ctx.session):
            return 1
        return 0
    finally:
        await ctx.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="form_bldr", description="Load a form builder and show its field order.")
    parser.add_argument("form_id", nargs="?", default=config.FORM_ID, help="form id (default: FORM_BLDR_FORM_ID)")
    parser.add_argument("--dump", type=Path, help="write the store snapshot to this .json/.yml file")
    parser.add_argument("--verbose", action="store_true", help="debug output on the console")
    args = parser.parse_args(argv)

    if not args.form_id:
        parser.error("a form id is required (argument or FORM_BLDR_FORM_ID)")

    logger = setup_logging(verbose_console=args.verbose)
    return asyncio.run(run(args.form_id, logger=logger, dump=args.dump))


def setup_logging(verbose_console: bool = False, log_file: str | None = "form_builder.log"):
    logger = logging.getLogger("form_bldr")
    logger.setLevel(logging.DEBUG)  # emit everything; handlers will filter

    # Clear existing handlers if this is called multiple times
    logger.handlers.clear()
    logger.propagate = False  # don't double-log via root

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    formatter = logging.Formatter(fmt)

    # --- Console: WARNING (or DEBUG if verbose_console=True) ---
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose_console else logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # --- File: DEBUG, truncated each run ---
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.name = "default_file"
        logger.addHandler(file_handler)

    return logger


if __name__ == "__main__":
    raise SystemExit(main())
