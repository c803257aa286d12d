"""FastAPI service exposing one page-editor session."""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from action_exec import run_node_event
from action_plan import default_config, is_action_type, plan_actions
from expression_eval import computed_node, to_jsonable
from page_document import export_document, import_document
from pagekit.canonical_json import find_invalid_value
from tree_store import TreeStore, is_component_kind


app = FastAPI(title="Page Editor")
logger = logging.getLogger("pagekit.app")
logging.basicConfig(level=logging.INFO)

_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("PAGEKIT_CORS_ORIGINS", "").split(",")
    if origin.strip()
}

_DEFAULT_CONTEXT = {
    "user": {"name": "John Doe", "email": "john@example.com"},
    "app": {"title": "My Awesome App", "version": "1.0.0"},
}

_store = TreeStore(context=_DEFAULT_CONTEXT)
# Replaced in tests with a client on an httpx.MockTransport.
_http_client = None


def _alerts_sink(message: Any) -> None:
    logger.info("action_alert message=%s", message)


@app.middleware("http")
async def local_cors_middleware(request: Request, call_next):
    origin = request.headers.get("origin")
    if request.method == "OPTIONS":
        response = JSONResponse({}, status_code=200)
    else:
        response = await call_next(request)
    normalized_origin = origin.rstrip("/") if isinstance(origin, str) else origin
    if normalized_origin and (normalized_origin in _CORS_ORIGINS or _LOCAL_CORS_REGEX.match(normalized_origin)):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


def _tree_payload(applied: bool) -> dict:
    return {"applied": applied, "tree_hash": _store.tree_hash(), "selected_id": _store.selected_id}


@dataclass
class RequestBodyError(Exception):
    code: str
    message: str
    path: str | None = None


@app.exception_handler(RequestBodyError)
async def request_body_error_handler(request: Request, exc: RequestBodyError):
    return _error_response(exc.code, exc.message, exc.path)


async def _json_body(request: Request) -> Any:
    try:
        body = await request.json()
    except ValueError:
        return None
    problem = find_invalid_value(body)
    if problem is not None:
        raise RequestBodyError("REQUEST_VALUE_INVALID", problem, "$")
    return body


def get_store() -> TreeStore:
    return _store


def reset_session(context: dict | None = None) -> TreeStore:
    global _store
    _store = TreeStore(context=_DEFAULT_CONTEXT if context is None else context)
    return _store


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.post("/session/reset")
async def session_reset(request: Request) -> JSONResponse:
    body = await _json_body(request)
    context = body.get("context") if isinstance(body, dict) else None
    if context is not None and not isinstance(context, dict):
        return _error_response("SESSION_CONTEXT_INVALID", "context must be object", "context")
    reset_session(context)
    return _ok_response({"root": _store.root, "context": _store.context})


@app.get("/tree")
async def get_tree() -> JSONResponse:
    return _ok_response({"root": _store.root, "tree_hash": _store.tree_hash(), "selected_id": _store.selected_id})


@app.get("/preview")
async def get_preview() -> JSONResponse:
    return _ok_response({"root": computed_node(_store.root, _store.context)})


@app.get("/nodes/{node_id}")
async def get_node(node_id: str) -> JSONResponse:
    node = _store.find_by_id(node_id)
    if node is None:
        return _error_response("NODE_NOT_FOUND", "Node not found", "node_id", status=404)
    parent = _store.find_parent(node_id)
    return _ok_response({"node": node, "parent_id": parent.get("id") if parent else None})


@app.post("/nodes/{parent_id}/children")
async def add_child(parent_id: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    if not isinstance(body, dict):
        return _error_response("REQUEST_INVALID", "body must be object", "$")
    if isinstance(body.get("node"), dict):
        inserted = _store.insert_child(parent_id, body["node"])
    else:
        kind = body.get("type")
        if not is_component_kind(kind):
            return _error_response("NODE_TYPE_UNKNOWN", f"Unknown component type: {kind}", "type")
        inserted = _store.add_component(parent_id, kind)
    return _ok_response({"id": inserted, **_tree_payload(inserted is not None)})


@app.patch("/nodes/{node_id}")
async def patch_node(node_id: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    if not isinstance(body, dict):
        return _error_response("REQUEST_INVALID", "body must be object", "$")
    applied = _store.update_fields(node_id, body)
    return _ok_response(_tree_payload(applied))


@app.delete("/nodes/{node_id}")
async def delete_node(node_id: str) -> JSONResponse:
    applied = _store.remove(node_id)
    return _ok_response(_tree_payload(applied))


@app.post("/nodes/{node_id}/reorder")
async def reorder_node(node_id: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    direction = body.get("direction") if isinstance(body, dict) else None
    if direction not in ("up", "down"):
        return _error_response("DIRECTION_INVALID", "direction must be up or down", "direction")
    applied = _store.reorder_sibling(node_id, direction)
    return _ok_response(_tree_payload(applied))


@app.post("/nodes/{node_id}/move")
async def move_node(node_id: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    if not isinstance(body, dict):
        return _error_response("REQUEST_INVALID", "body must be object", "$")
    target_id = body.get("target_id")
    index = body.get("index", 0)
    if not isinstance(target_id, str):
        return _error_response("MOVE_TARGET_INVALID", "target_id must be string", "target_id")
    if not isinstance(index, int) or isinstance(index, bool):
        return _error_response("MOVE_INDEX_INVALID", "index must be integer", "index")
    applied = _store.move_to(node_id, target_id, index)
    return _ok_response(_tree_payload(applied))


@app.put("/selection")
async def put_selection(request: Request) -> JSONResponse:
    body = await _json_body(request)
    node_id = body.get("id") if isinstance(body, dict) else None
    if node_id is not None and not isinstance(node_id, str):
        return _error_response("SELECTION_INVALID", "id must be string or null", "id")
    _store.select(node_id)
    return _ok_response({"selected_id": _store.selected_id})


@app.post("/nodes/{node_id}/events/{event_name}/actions")
async def add_action(node_id: str, event_name: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    action_type = body.get("type") if isinstance(body, dict) else None
    if not is_action_type(action_type):
        return _error_response("ACTION_TYPE_UNKNOWN", f"Unknown action type: {action_type}", "type")
    node = _store.find_by_id(node_id)
    if node is None:
        return _error_response("NODE_NOT_FOUND", "Node not found", "node_id", status=404)
    events = dict(node.get("events") or {})
    action = {"id": uuid.uuid4().hex[:7], "type": action_type, "config": default_config(action_type)}
    events[event_name] = [*(events.get(event_name) or []), action]
    applied = _store.update_fields(node_id, {"events": events})
    return _ok_response({"action": action, **_tree_payload(applied)})


@app.patch("/nodes/{node_id}/events/{event_name}/actions/{action_id}")
async def update_action_config(node_id: str, event_name: str, action_id: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    if not isinstance(body, dict):
        return _error_response("REQUEST_INVALID", "body must be object", "$")
    node = _store.find_by_id(node_id)
    if node is None:
        return _error_response("NODE_NOT_FOUND", "Node not found", "node_id", status=404)
    events = dict(node.get("events") or {})
    actions = events.get(event_name) or []
    if not any(a.get("id") == action_id for a in actions if isinstance(a, dict)):
        return _error_response("ACTION_NOT_FOUND", "Action not found", "action_id", status=404)
    events[event_name] = [
        {**a, "config": {**(a.get("config") or {}), **body}} if isinstance(a, dict) and a.get("id") == action_id else a
        for a in actions
    ]
    applied = _store.update_fields(node_id, {"events": events})
    planned = plan_actions(events[event_name])
    return _ok_response(_tree_payload(applied), warnings=planned["errors"] + planned["warnings"])


@app.delete("/nodes/{node_id}/events/{event_name}/actions/{action_id}")
async def remove_action(node_id: str, event_name: str, action_id: str) -> JSONResponse:
    node = _store.find_by_id(node_id)
    if node is None:
        return _error_response("NODE_NOT_FOUND", "Node not found", "node_id", status=404)
    events = dict(node.get("events") or {})
    events[event_name] = [
        a for a in events.get(event_name) or [] if not (isinstance(a, dict) and a.get("id") == action_id)
    ]
    applied = _store.update_fields(node_id, {"events": events})
    return _ok_response(_tree_payload(applied))


@app.post("/nodes/{node_id}/events/{event_name}/run")
async def run_event(node_id: str, event_name: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    local_ctx = body.get("local_context") if isinstance(body, dict) else None
    node = _store.find_by_id(node_id)
    if node is None:
        return _error_response("NODE_NOT_FOUND", "Node not found", "node_id", status=404)
    result = await run_node_event(
        node,
        event_name,
        local_ctx,
        {"store": _store, "http": _http_client, "notify": _alerts_sink},
    )
    # Action failures are diagnostics, never a failed request.
    return _ok_response(
        {
            "run_ok": result["ok"],
            "run_errors": result["errors"],
            "notices": result["notices"],
            "effects": result["effects"],
            "context": to_jsonable(_store.context),
        },
        warnings=result["warnings"],
    )


@app.get("/context")
async def get_context() -> JSONResponse:
    return _ok_response({"context": _store.context})


@app.put("/context/{key}")
async def put_context_value(key: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    if not isinstance(body, dict) or "value" not in body:
        return _error_response("REQUEST_INVALID", "value required", "value")
    _store.set_context_value(key, body["value"])
    return _ok_response({"context": _store.context})


@app.get("/document")
async def get_document() -> JSONResponse:
    return _ok_response({"document": export_document(_store)})


@app.post("/document")
async def post_document(request: Request) -> JSONResponse:
    raw = await request.body()
    result = import_document(_store, raw)
    if not result["ok"]:
        body: Dict[str, Any] = {"ok": False, "errors": result["errors"], "warnings": result["warnings"]}
        return JSONResponse(jsonable_encoder(body), status_code=400)
    return _ok_response({"version": result["version"], "tree_hash": _store.tree_hash()}, warnings=result["warnings"])
