"""JSON result envelope shared by every command."""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel

from . import models, utils
from .errors import AgentError


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [_dump(item) for item in value]
    if isinstance(value, dict):
        return {key: _dump(item) for key, item in value.items()}
    return value


def build_success(action: str, result: Any, *, timestamp: Optional[str] = None) -> dict:
    return {
        "success": True,
        "action": action,
        "result": _dump(result),
        "timestamp": timestamp or utils.utc_timestamp(),
    }


def build_error(action: str, error: AgentError, *, timestamp: Optional[str] = None) -> dict:
    info: dict = {"code": error.code.value, "message": error.message}
    if error.details:
        info["details"] = _dump(error.details)
    return {
        "success": False,
        "action": action,
        "error": info,
        "timestamp": timestamp or utils.utc_timestamp(),
    }


def dumps(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


def parse(text: str | bytes) -> models.Envelope:
    """Parse one envelope document; raises ValueError on malformed input."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid envelope JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("envelope must be a JSON object")
    return models.Envelope.model_validate(data)
