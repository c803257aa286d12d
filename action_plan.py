"""Action parsing: raw event action dicts into typed action variants, without side effects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Union


Issue = Dict[str, Any]

ACTION_SET_STATE = "setState"
ACTION_CONSOLE_LOG = "consoleLog"
ACTION_ALERT = "alert"
ACTION_WEBHOOK = "n8n-webhook"

ALLOWED_ACTION_TYPES = {ACTION_SET_STATE, ACTION_CONSOLE_LOG, ACTION_ALERT, ACTION_WEBHOOK}
ALLOWED_HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}


@dataclass
class ActionConfigError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


@dataclass(frozen=True)
class SetStateAction:
    id: str
    key: str
    value: Any = None
    type: str = field(default=ACTION_SET_STATE, init=False)


@dataclass(frozen=True)
class ConsoleLogAction:
    id: str
    message: Any = None
    type: str = field(default=ACTION_CONSOLE_LOG, init=False)


@dataclass(frozen=True)
class AlertAction:
    id: str
    message: Any = None
    type: str = field(default=ACTION_ALERT, init=False)


@dataclass(frozen=True)
class WebhookAction:
    id: str
    url: str
    method: str = "POST"
    body: Any = None
    response_mapping: Dict[str, str] = field(default_factory=dict)
    type: str = field(default=ACTION_WEBHOOK, init=False)


Action = Union[SetStateAction, ConsoleLogAction, AlertAction, WebhookAction]


def is_action_type(action_type: Any) -> bool:
    return isinstance(action_type, str) and action_type in ALLOWED_ACTION_TYPES


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {
        "code": code,
        "message": message,
        "path": path,
        "detail": detail,
    }


def _raise(code: str, message: str, path: str) -> None:
    raise ActionConfigError(code, message, path)


def _parse_response_mapping(raw: Any, path: str) -> Dict[str, str]:
    if raw is None or raw == "":
        return {}
    if not isinstance(raw, dict):
        _raise("ACTION_CONFIG_INVALID", "responseMapping must be object", path)
    mapping: Dict[str, str] = {}
    for target_key, response_path in raw.items():
        if not isinstance(target_key, str) or not target_key:
            _raise("ACTION_CONFIG_INVALID", "responseMapping keys must be non-empty strings", path)
        if not isinstance(response_path, str) or not response_path:
            _raise("ACTION_CONFIG_INVALID", "responseMapping paths must be non-empty strings", f"{path}.{target_key}")
        mapping[target_key] = response_path
    return mapping


def parse_action(raw: Any, path: str = "$") -> Action:
    """Build the typed variant for one raw ``{"id", "type", "config"}`` action."""
    if not isinstance(raw, dict):
        _raise("ACTION_INVALID", "action must be object", path)
    action_type = raw.get("type")
    if not is_action_type(action_type):
        _raise("ACTION_TYPE_UNKNOWN", f"Unknown action type: {action_type}", f"{path}.type")
    action_id = raw.get("id")
    if action_id is None:
        action_id = ""
    if not isinstance(action_id, str):
        _raise("ACTION_INVALID", "id must be string", f"{path}.id")
    config = raw.get("config")
    if config is None:
        config = {}
    if not isinstance(config, dict):
        _raise("ACTION_CONFIG_INVALID", "config must be object", f"{path}.config")
    config_path = f"{path}.config"

    if action_type == ACTION_SET_STATE:
        key = config.get("key")
        if not isinstance(key, str) or not key:
            _raise("ACTION_CONFIG_INVALID", "setState requires key", f"{config_path}.key")
        return SetStateAction(id=action_id, key=key, value=config.get("value"))

    if action_type == ACTION_CONSOLE_LOG:
        return ConsoleLogAction(id=action_id, message=config.get("message"))

    if action_type == ACTION_ALERT:
        return AlertAction(id=action_id, message=config.get("message"))

    url = config.get("url")
    if not isinstance(url, str) or not url:
        _raise("ACTION_CONFIG_INVALID", "n8n-webhook requires url", f"{config_path}.url")
    method = config.get("method") or "POST"
    if not isinstance(method, str) or method.upper() not in ALLOWED_HTTP_METHODS:
        _raise("ACTION_CONFIG_INVALID", f"Unsupported method: {method}", f"{config_path}.method")
    return WebhookAction(
        id=action_id,
        url=url,
        method=method.upper(),
        body=config.get("body"),
        response_mapping=_parse_response_mapping(config.get("responseMapping"), f"{config_path}.responseMapping"),
    )


def plan_actions(raw_actions: Any) -> dict:
    """Validate a whole action list; report every problem instead of stopping at the first."""
    errors: List[Issue] = []
    warnings: List[Issue] = []
    actions: List[Action] = []

    if raw_actions is None:
        return {"ok": True, "errors": errors, "warnings": warnings, "actions": actions}
    if not isinstance(raw_actions, list):
        errors.append(_issue("ACTIONS_INVALID", "actions must be list", "$"))
        return {"ok": False, "errors": errors, "warnings": warnings, "actions": actions}

    seen_ids: set[str] = set()
    for idx, raw in enumerate(raw_actions):
        path = f"$[{idx}]"
        try:
            action = parse_action(raw, path)
        except ActionConfigError as exc:
            errors.append(_issue(exc.code, exc.message, exc.path))
            continue
        if action.id:
            if action.id in seen_ids:
                warnings.append(_issue("ACTION_ID_DUPLICATE", "Duplicate action id in list", f"{path}.id", {"id": action.id}))
            seen_ids.add(action.id)
        actions.append(action)

    return {"ok": not errors, "errors": errors, "warnings": warnings, "actions": actions}


def default_config(action_type: str) -> dict:
    """Starter config for a freshly added action of ``action_type``."""
    if action_type == ACTION_WEBHOOK:
        return {"url": "https://your-n8n-instance.com/webhook/...", "method": "POST"}
    if action_type == ACTION_SET_STATE:
        return {"key": "key", "value": "value"}
    if action_type == ACTION_CONSOLE_LOG:
        return {"message": "Hello World"}
    if action_type == ACTION_ALERT:
        return {"message": "Alert Message"}
    raise ValueError(f"Unknown action type: {action_type}")
