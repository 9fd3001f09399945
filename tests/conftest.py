"""
Shared fixtures: an in-memory builder backend behind httpx.MockTransport.

The fake follows the admin API closely enough for the client to be
exercised end to end: envelope {ok, data|error, traceId}, x-trace-id
header, REORDER appending missing ids and rejecting unknown/duplicate ids,
DUPLICATE_FIELD generating `<key>_2` and inserting after the source.
"""
from __future__ import annotations

import asyncio
import copy
import json
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

from src.form_bldr.context import build_context
from src.form_bldr.library_catalog import LibraryCatalog

BASE_URL = "http://builder.test/api/admin/v1"
PREFIX = "/api/admin/v1"
FORM_ID = "form-1"


def wire_field(fid: str, key: str, label: str, sort_order: int, *, type_: str = "TEXT",
               section: Optional[str] = "FORM", **config: Any) -> dict[str, Any]:
    cfg: Optional[dict[str, Any]] = dict(config)
    if section is not None:
        cfg["section"] = section
    return {
        "id": fid,
        "key": key,
        "label": label,
        "type": type_,
        "required": False,
        "isActive": True,
        "sortOrder": sort_order,
        "placeholder": None,
        "helpText": None,
        "config": cfg or None,
    }


def seeded_fields() -> list[dict[str, Any]]:
    return [
        wire_field("fa", "company_size", "Company size", 0, type_="SINGLE_SELECT", options=["1-10", "11-50"]),
        wire_field("fb", "interest", "Interest", 1),
        wire_field("fc", "notes", "Notes", 2, type_="TEXTAREA"),
        wire_field("f-first", "firstName", "First name", 3, section="CONTACT"),
        wire_field("f-email", "email", "Email", 4, type_="EMAIL", section="CONTACT"),
        wire_field("f-ocr", "businessCard", "Business card (OCR)", 5, section="CONTACT", variant="attachment"),
        # legacy row without config.section; normalized by key
        wire_field("f-last", "lastName", "Last name", 6, section=None),
    ]


@dataclass
class Failure:
    status: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Unexpected error."
    network: bool = False
    raw: Optional[bytes] = None


@dataclass
class FakeBackend:
    form: dict[str, Any] = field(default_factory=lambda: {
        "id": FORM_ID,
        "name": "Trade fair 2026",
        "status": "DRAFT",
        "description": None,
        "config": {"captureStart": "FORM_FIRST", "contactPolicy": "EMAIL_OR_PHONE"},
    })
    fields: list[dict[str, Any]] = field(default_factory=seeded_fields)
    requests: list[dict[str, Any]] = field(default_factory=list)
    failures: dict[str, Failure] = field(default_factory=dict)
    gate: Optional[asyncio.Event] = None
    _next_id: int = 1
    _trace: int = 0

    # ---------- test helpers ----------

    def fail(self, op: str, **kw: Any) -> None:
        """Fail the next call of `op` (GET, CREATE, REORDER, PATCH_FIELD, ...)."""
        self.failures[op] = Failure(**kw)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def ops(self) -> list[str]:
        return [r["op"] for r in self.requests]

    def ordered(self) -> list[dict[str, Any]]:
        return sorted(self.fields, key=lambda f: f["sortOrder"])

    def ordered_ids(self) -> list[str]:
        return [f["id"] for f in self.ordered()]

    def by_id(self, fid: str) -> Optional[dict[str, Any]]:
        return next((f for f in self.fields if f["id"] == fid), None)

    def section_of(self, fid: str) -> Optional[str]:
        cfg = (self.by_id(fid) or {}).get("config") or {}
        return cfg.get("section")

    # ---------- transport ----------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len(PREFIX):] if request.url.path.startswith(PREFIX) else request.url.path
        body = json.loads(request.content) if request.content else None
        op = self._op_name(request.method, path, body)
        self.requests.append({"method": request.method, "path": path, "op": op, "body": body})

        if self.gate is not None:
            await self.gate.wait()

        failure = self.failures.pop(op, None)
        if failure is not None:
            if failure.network:
                raise httpx.ConnectError("connection refused", request=request)
            if failure.raw is not None:
                return httpx.Response(failure.status, content=failure.raw)
            return self._error(failure.status, failure.code, failure.message)

        try:
            status, data = self._dispatch(op, path, body)
        except _HttpError as e:
            return self._error(e.status, e.code, e.message)
        return self._ok(data, status=status)

    @staticmethod
    def _op_name(method: str, path: str, body: Any) -> str:
        if method == "GET":
            return "GET"
        if method == "POST" and path.endswith("/fields"):
            return "CREATE"
        if isinstance(body, dict) and body.get("op"):
            return str(body["op"])
        return f"{method} {path}"

    def _trace_id(self) -> str:
        self._trace += 1
        return f"trace-{self._trace}"

    def _ok(self, data: Any, *, status: int = 200) -> httpx.Response:
        trace = self._trace_id()
        return httpx.Response(status, json={"ok": True, "data": data, "traceId": trace},
                              headers={"x-trace-id": trace})

    def _error(self, status: int, code: str, message: str) -> httpx.Response:
        trace = self._trace_id()
        return httpx.Response(status, json={"ok": False, "error": {"code": code, "message": message},
                                            "traceId": trace}, headers={"x-trace-id": trace})

    # ---------- fake server semantics ----------

    def _dispatch(self, op: str, path: str, body: Any) -> tuple[int, Any]:
        if not path.startswith(f"/forms/{self.form['id']}/"):
            raise _HttpError(404, "NOT_FOUND", "Not found.")

        if op == "GET":
            return 200, {"form": copy.deepcopy(self.form), "fields": copy.deepcopy(self.ordered())}
        if op == "CREATE":
            return 201, self._create(body)
        if op == "REORDER":
            return 200, self._reorder(body["order"])
        if op == "PATCH_FIELD":
            return 200, self._patch_field(body["fieldId"], body["patch"])
        if op == "DUPLICATE_FIELD":
            return 200, self._duplicate(body["fieldId"])
        if op == "DELETE_FIELD":
            return 200, self._delete(body["fieldId"])
        if op == "PATCH_FORM":
            self.form.update(body["patch"])
            return 200, {"updated": 1}
        raise _HttpError(400, "BAD_REQUEST", f"Unknown op {op}")

    def _require(self, fid: str) -> dict[str, Any]:
        f = self.by_id(fid)
        if f is None:
            raise _HttpError(404, "NOT_FOUND", "Not found.")
        return f

    def _keys(self) -> set[str]:
        return {f["key"] for f in self.fields}

    def _create(self, body: dict[str, Any]) -> dict[str, Any]:
        if body["key"] in self._keys():
            raise _HttpError(409, "KEY_CONFLICT", "Field key must be unique per form.")
        fid = f"new-{self._next_id}"
        self._next_id += 1
        created = {
            "id": fid,
            "key": body["key"],
            "label": body["label"],
            "type": body["type"],
            "required": body.get("required", False),
            "isActive": body.get("isActive", True),
            "sortOrder": max((f["sortOrder"] for f in self.fields), default=-1) + 1,
            "placeholder": body.get("placeholder"),
            "helpText": body.get("helpText"),
            "config": body.get("config"),
        }
        self.fields.append(created)
        return copy.deepcopy(created)

    def _reorder(self, order: list[str]) -> dict[str, Any]:
        existing = self.ordered_ids()
        if not existing:
            return {"updated": 0}
        for fid in order:
            if fid not in existing:
                raise _HttpError(400, "BAD_REQUEST", "Order contains unknown field ids.")
        final = list(order) + [fid for fid in existing if fid not in order]
        if len(set(final)) != len(final):
            raise _HttpError(400, "BAD_REQUEST", "Order contains duplicate field ids.")
        for i, fid in enumerate(final):
            self._require(fid)["sortOrder"] = i
        return {"updated": len(final)}

    def _patch_field(self, fid: str, patch: dict[str, Any]) -> dict[str, Any]:
        f = self._require(fid)
        if "key" in patch and patch["key"] != f["key"] and patch["key"] in self._keys():
            raise _HttpError(409, "KEY_CONFLICT", "Field key must be unique per form.")
        f.update(patch)
        return copy.deepcopy(f)

    def _duplicate(self, fid: str) -> dict[str, Any]:
        src = self._require(fid)
        used = self._keys()
        key, n = src["key"], 2
        while key in used:
            suffix = f"_{n}"
            key = src["key"][: 64 - len(suffix)] + suffix
            n += 1
        insert_at = src["sortOrder"] + 1
        for f in self.fields:
            if f["sortOrder"] >= insert_at:
                f["sortOrder"] += 1
        created = copy.deepcopy(src)
        created.update(id=f"dup-{self._next_id}", key=key, label=f"{src['label']} (Kopie)", sortOrder=insert_at)
        self._next_id += 1
        self.fields.append(created)
        return copy.deepcopy(created)

    def _delete(self, fid: str) -> dict[str, Any]:
        f = self._require(fid)
        self.fields.remove(f)
        for other in self.fields:
            if other["sortOrder"] > f["sortOrder"]:
                other["sortOrder"] -= 1
        return {"deleted": 1}


class _HttpError(Exception):
    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status, self.code, self.message = status, code, message


# ---------- fixtures ----------

@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def empty_backend() -> FakeBackend:
    return FakeBackend(fields=[])


@pytest.fixture(scope="session")
def catalog() -> LibraryCatalog:
    return LibraryCatalog.default()


def make_ctx(backend: FakeBackend):
    return build_context(FORM_ID, transport=backend.transport(), base_url=BASE_URL, log_mode="trace")


@pytest_asyncio.fixture
async def ctx(backend):
    app = make_ctx(backend)
    outcome = await app.coordinator.reload()
    assert outcome.ok, outcome.failure
    backend.requests.clear()
    yield app
    await app.session.close()


@pytest_asyncio.fixture
async def empty_ctx(empty_backend):
    app = make_ctx(empty_backend)
    outcome = await app.coordinator.reload()
    assert outcome.ok, outcome.failure
    empty_backend.requests.clear()
    yield app
    await app.session.close()
