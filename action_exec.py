"""Action execution pipeline (sequential, per-action failure isolation)."""

from __future__ import annotations

import inspect
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List

import httpx

from action_plan import (
    ActionConfigError,
    AlertAction,
    ConsoleLogAction,
    SetStateAction,
    WebhookAction,
    parse_action,
)
from expression_eval import evaluate, to_jsonable
from pagekit.canonical_json import reject_non_finite
from pagekit.dotted_path import MISSING, lookup


Issue = Dict[str, Any]

LAST_RESULT_KEY = "lastResult"

logger = logging.getLogger("pagekit.actions")

_ENV_TIMEOUT = float(os.getenv("PAGEKIT_WEBHOOK_TIMEOUT", "30") or "0")
DEFAULT_WEBHOOK_TIMEOUT: float | None = _ENV_TIMEOUT if _ENV_TIMEOUT > 0 else None


@dataclass
class ActionExecError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def build_request_body(body: Any, ctx: dict, runtime_context: dict) -> dict:
    """Request body for a webhook: configured body plus the whole runtime context.

    A string body is parsed as JSON when it can be; otherwise it is evaluated
    as a template and sent as ``{"value": ...}``. JSON that parses to something
    other than an object (``"[1, 2]"``, ``"7"``) is wrapped the same way, never
    spread into the body.
    """
    base: Dict[str, Any] = {}
    if isinstance(body, dict):
        base = dict(body)
    elif isinstance(body, str) and body:
        try:
            parsed = json.loads(body, parse_constant=reject_non_finite)
        except ValueError:
            base = {"value": evaluate(body, ctx)}
        else:
            base = dict(parsed) if isinstance(parsed, dict) else {"value": parsed}
    elif body not in (None, ""):
        base = {"value": body}
    base["context"] = runtime_context
    return to_jsonable(base)


async def _notify(notify: Any, message: Any) -> None:
    if notify is None:
        return
    result = notify(message)
    if inspect.isawaitable(result):
        await result


async def _run_webhook(action: WebhookAction, ctx: dict, deps: dict, path: str, effects: dict, warnings: List[Issue]) -> None:
    store = deps["store"]
    timeout = deps.get("timeout", DEFAULT_WEBHOOK_TIMEOUT)
    request_kwargs: Dict[str, Any] = {
        "headers": {"Content-Type": "application/json"},
        "timeout": timeout,
    }
    if action.method != "GET":
        final_body = build_request_body(action.body, ctx, store.context)
        request_kwargs["content"] = json.dumps(final_body, ensure_ascii=False).encode("utf-8")

    logger.info("webhook_request action_id=%s method=%s url=%s", action.id, action.method, action.url)
    client = deps.get("http")
    if client is None:
        async with httpx.AsyncClient() as owned:
            response = await owned.request(action.method, action.url, **request_kwargs)
    else:
        response = await client.request(action.method, action.url, **request_kwargs)

    if response.status_code >= 400:
        logger.warning("webhook_status action_id=%s status=%s", action.id, response.status_code)
    try:
        payload = response.json(parse_constant=reject_non_finite)
    except ValueError as exc:
        raise ActionExecError("WEBHOOK_RESPONSE_INVALID", f"Response is not JSON: {exc}", path) from exc
    logger.debug("webhook_response action_id=%s payload=%s", action.id, payload)

    effects["webhooks"].append(
        {"action_id": action.id, "url": action.url, "method": action.method, "status": response.status_code}
    )

    if action.response_mapping:
        for target_key, response_path in action.response_mapping.items():
            value = lookup(payload, response_path)
            if value is MISSING:
                warnings.append(
                    _issue("WEBHOOK_MAPPING_MISS", "Response path not found", f"{path}.config.responseMapping", {"key": target_key, "path": response_path})
                )
                continue
            store.set_context_value(target_key, value)
            effects["state_keys"].append(target_key)
    else:
        store.set_context_value(LAST_RESULT_KEY, payload)
        effects["state_keys"].append(LAST_RESULT_KEY)


async def run_actions(actions: Any, local_ctx: dict | None, deps: dict) -> dict:
    """Run an event's action list in declared order.

    ``deps``: ``store`` (TreeStore, required), ``http`` (httpx.AsyncClient),
    ``notify`` (callable for alert notices, may be async), ``timeout`` (seconds
    or None). A failing action is reported and the list moves on to the next one.
    """
    errors: List[Issue] = []
    warnings: List[Issue] = []
    notices: List[dict] = []
    effects: Dict[str, list] = {"state_keys": [], "webhooks": []}

    store = deps.get("store")
    if store is None:
        errors.append(_issue("EXEC_DEPS_MISSING", "store dep required", "$"))
        return {"ok": False, "errors": errors, "warnings": warnings, "notices": notices, "effects": effects}
    if local_ctx is None:
        local_ctx = {}
    if not isinstance(local_ctx, dict):
        errors.append(_issue("EXEC_CTX_INVALID", "local context must be object", "local_ctx"))
        return {"ok": False, "errors": errors, "warnings": warnings, "notices": notices, "effects": effects}
    if not actions:
        return {"ok": True, "errors": errors, "warnings": warnings, "notices": notices, "effects": effects}
    if not isinstance(actions, list):
        errors.append(_issue("ACTIONS_INVALID", "actions must be list", "$"))
        return {"ok": False, "errors": errors, "warnings": warnings, "notices": notices, "effects": effects}

    for idx, raw in enumerate(actions):
        path = f"$[{idx}]"
        action_type = raw.get("type") if isinstance(raw, dict) else None
        action_id = raw.get("id") if isinstance(raw, dict) else None
        logger.info("action_start action_id=%s type=%s", action_id, action_type)
        ctx = {**store.context, **local_ctx}

        try:
            action = parse_action(raw, path)

            if isinstance(action, ConsoleLogAction):
                message = evaluate(action.message, ctx)
                logger.info("action_log message=%s", message)
                notices.append({"kind": "log", "action_id": action.id, "message": to_jsonable(message)})

            elif isinstance(action, AlertAction):
                message = evaluate(action.message, ctx)
                await _notify(deps.get("notify"), message)
                notices.append({"kind": "alert", "action_id": action.id, "message": to_jsonable(message)})

            elif isinstance(action, SetStateAction):
                value = evaluate(action.value, ctx)
                store.set_context_value(action.key, value)
                effects["state_keys"].append(action.key)

            elif isinstance(action, WebhookAction):
                await _run_webhook(action, ctx, deps, path, effects, warnings)

        except ActionConfigError as exc:
            errors.append(_issue(exc.code, exc.message, exc.path, {"action_id": action_id}))
        except ActionExecError as exc:
            errors.append(_issue(exc.code, exc.message, exc.path, {"action_id": action_id}))
        except httpx.HTTPError as exc:
            errors.append(_issue("WEBHOOK_REQUEST_FAILED", str(exc) or type(exc).__name__, path, {"action_id": action_id}))
        except Exception as exc:
            errors.append(_issue("ACTION_FAILED", str(exc) or type(exc).__name__, path, {"action_id": action_id}))
        else:
            continue
        logger.warning("action_failed action_id=%s type=%s error=%s", action_id, action_type, errors[-1]["message"])

    return {
        "ok": not errors,
        "errors": errors,
        "warnings": warnings,
        "notices": notices,
        "effects": effects,
    }


async def run_node_event(node: dict | None, event_name: str, local_ctx: dict | None, deps: dict) -> dict:
    """Run the actions a node attaches to ``event_name`` (e.g. ``onClick``)."""
    events = node.get("events") if isinstance(node, dict) else None
    actions = events.get(event_name) if isinstance(events, dict) else None
    return await run_actions(actions, local_ctx, deps)
