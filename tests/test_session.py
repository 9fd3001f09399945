import json
import logging

import httpx
import pytest

from src import config
from src.form_bldr.builder_api import BuilderAPI
from src.form_bldr.errors import BadResponseError, NetworkError, ServerError, ValidationError
from src.form_bldr.instrumentation import Cat, format_ctx
from src.form_bldr.session import BuilderSession
from src.form_bldr.types import FieldSection
from tests.conftest import BASE_URL, FORM_ID


def session_for(handler, **kw) -> BuilderSession:
    return BuilderSession(base_url=BASE_URL, transport=httpx.MockTransport(handler), **kw)


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_ok_returns_data_and_trace(self):
        s = session_for(lambda r: httpx.Response(200, json={"ok": True, "data": {"x": 1}},
                                                 headers={"x-trace-id": "t-1"}))
        assert await s.request("GET", "/forms/a/builder") == {"x": 1}
        assert s.last_trace_id == "t-1"
        await s.close()

    @pytest.mark.asyncio
    async def test_server_error_carries_code_message_trace(self):
        s = session_for(lambda r: httpx.Response(
            409, json={"ok": False, "error": {"code": "KEY_CONFLICT", "message": "taken"}, "traceId": "t-9"}
        ))
        with pytest.raises(ServerError) as ei:
            await s.request("POST", "/forms/a/fields", json={})
        err = ei.value
        assert (err.code, err.message, err.status, err.trace_id) == ("KEY_CONFLICT", "taken", 409, "t-9")
        assert "traceId=t-9" in str(err)
        await s.close()

    @pytest.mark.asyncio
    async def test_non_json_error_status_is_http_error(self):
        s = session_for(lambda r: httpx.Response(502, content=b"<html>bad gateway</html>"))
        with pytest.raises(BadResponseError) as ei:
            await s.request("GET", "/x")
        assert ei.value.code == "HTTP_ERROR"
        assert ei.value.status == 502
        await s.close()

    @pytest.mark.asyncio
    async def test_unexpected_shape_is_bad_response(self):
        s = session_for(lambda r: httpx.Response(200, json={"data": []}))
        with pytest.raises(BadResponseError) as ei:
            await s.request("GET", "/x")
        assert ei.value.code == "BAD_RESPONSE"
        await s.close()

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self):
        def boom(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        s = session_for(boom)
        with pytest.raises(NetworkError) as ei:
            await s.request("GET", "/x")
        assert ei.value.code == "NETWORK_ERROR"
        assert s.counters.get("api.network_errors") == 1
        await s.close()


@pytest.mark.asyncio
async def test_headers_from_config(monkeypatch):
    monkeypatch.setattr(config, "FORM_BLDR_TENANT_SLUG", "acme")
    monkeypatch.setattr(config, "FORM_BLDR_DEV_USER_ID", "u-1")
    monkeypatch.setattr(config, "FORM_BLDR_API_TOKEN", "tok")
    seen = {}

    def handler(request):
        seen.update(request.headers)
        return httpx.Response(200, json={"ok": True, "data": None})

    s = session_for(handler)
    await s.request("GET", "/x")
    assert seen["x-tenant-slug"] == "acme"
    assert seen["x-user-id"] == "u-1"
    assert seen["authorization"] == "Bearer tok"
    assert seen["accept"] == "application/json"
    await s.close()


class TestBuilderAPI:
    @pytest.mark.asyncio
    async def test_ops_are_tagged_patch_calls(self):
        bodies = []

        def handler(request):
            bodies.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"ok": True, "data": {"updated": 2}})

        api = BuilderAPI(session_for(handler))
        assert await api.reorder(FORM_ID, ["a", "b"]) == 2
        await api.delete_field(FORM_ID, "a")
        await api.patch_form(FORM_ID, {"name": "N"})

        assert bodies == [
            ("PATCH", f"/api/admin/v1/forms/{FORM_ID}/builder", {"op": "REORDER", "order": ["a", "b"]}),
            ("PATCH", f"/api/admin/v1/forms/{FORM_ID}/builder", {"op": "DELETE_FIELD", "fieldId": "a"}),
            ("PATCH", f"/api/admin/v1/forms/{FORM_ID}/builder", {"op": "PATCH_FORM", "patch": {"name": "N"}}),
        ]
        await api.session.close()

    @pytest.mark.asyncio
    async def test_patch_keys_are_checked_before_sending(self):
        calls = []
        api = BuilderAPI(session_for(lambda r: calls.append(r) or httpx.Response(200, json={"ok": True})))
        with pytest.raises(ValidationError):
            await api.patch_field(FORM_ID, "a", {"sortOrder": 3})
        with pytest.raises(ValidationError):
            await api.patch_form(FORM_ID, {"tenantId": "x"})
        assert calls == []
        await api.session.close()

    @pytest.mark.asyncio
    async def test_load_validates_shape(self):
        api = BuilderAPI(session_for(lambda r: httpx.Response(200, json={"ok": True, "data": {"form": {}}})))
        with pytest.raises(BadResponseError):
            await api.load(FORM_ID)
        await api.session.close()

    @pytest.mark.asyncio
    async def test_duplicate_parses_field(self):
        field = {"id": "d1", "key": "notes_2", "label": "Notes (Kopie)", "type": "TEXTAREA", "config": None}
        api = BuilderAPI(session_for(lambda r: httpx.Response(200, json={"ok": True, "data": field})))
        dup = await api.duplicate_field(FORM_ID, "n1", section_fallback=FieldSection.CONTACT)
        assert dup.key == "notes_2"
        assert dup.section is FieldSection.CONTACT
        await api.session.close()


class TestInstrumentation:
    def test_format_ctx_order(self):
        line = format_ctx(op="move", zeta=1, form="f", sec=FieldSection.CONTACT, alpha=None)
        assert line == "form=f sec=CONTACT op=move zeta=1"

    def test_diag_is_gated_by_mode(self, caplog):
        caplog.set_level(logging.DEBUG, logger="form_bldr")
        live = session_for(lambda r: httpx.Response(200), log_mode="live")
        live.emit_diag(Cat.STORE, "hidden")
        debug = session_for(lambda r: httpx.Response(200), log_mode="debug")
        debug.emit_diag(Cat.STORE, "shown", fid="a")
        debug.emit_trace(Cat.STORE, "trace-only")

        messages = [r.getMessage() for r in caplog.records]
        assert "[STORE] shown :: fid=a" in messages
        assert not any("hidden" in m or "trace-only" in m for m in messages)

    def test_rate_limit_from_policy(self, caplog):
        caplog.set_level(logging.DEBUG, logger="form_bldr")
        s = session_for(lambda r: httpx.Response(200), log_mode="trace")
        for _ in range(5):
            s.emit_trace(Cat.DROP, "indicator", key="DROP.indicator")
        assert sum("indicator" in r.getMessage() for r in caplog.records) == 1
