import json

import pytest
import yaml

from src.form_bldr.store_dump import dump_store_snapshot


@pytest.mark.asyncio
async def test_json_dump(ctx, tmp_path):
    out = tmp_path / "run" / "store.json"
    assert dump_store_snapshot(ctx.store, out, session=ctx.session)

    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["order"] == ctx.store.order()
    assert [f["key"] for f in data["sections"]["FORM"]] == ["company_size", "interest", "notes"]


@pytest.mark.asyncio
async def test_yaml_dump(ctx, tmp_path):
    out = tmp_path / "store.yml"
    assert dump_store_snapshot(ctx.store, out)

    data = yaml.safe_load(out.read_text(encoding="utf-8"))
    assert data["sections"]["CONTACT"][0]["key"] == "firstName"
    assert data["contact_first"] is False


@pytest.mark.asyncio
async def test_unwritable_target_returns_false(ctx, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    assert dump_store_snapshot(ctx.store, blocker / "store.json") is False
