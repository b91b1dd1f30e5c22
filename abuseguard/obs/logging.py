"""JSON logging for the guard service.

The HTTP middleware binds request-scoped fields (request id, route, actor,
client ip and user agent) and every record emitted while handling that
request carries them. Security event details hold attacker-supplied content,
so structured values are clipped and secret-looking keys are redacted before
they are serialised.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from abuseguard.settings import settings

_LOGGER_NAME = "abuseguard"
_AUDIT_PREFIX = "audit."

_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	name: ContextVar(f"obs_{name}", default=None)
	for name in ("request_id", "route", "user_id", "ip", "user_agent")
}

_REDACTED_KEYS = ("token", "secret", "authorization", "cookie", "password", "setup_key")

_MAX_STRING_LENGTH = 256
_MAX_ITEMS = 10

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind request fields that are set; returns the tokens for :func:`reset_context`."""
	return {name: _CONTEXT[name].set(value) for name, value in fields.items() if value is not None}


def reset_context(tokens: Mapping[str, Token]) -> None:
	for name, token in tokens.items():
		_CONTEXT[name].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"].get()


def _clip(value: Any) -> Any:
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING_LENGTH else f"{value[:_MAX_STRING_LENGTH]}…"
	if isinstance(value, Mapping):
		clipped = {str(key): _field(str(key), nested) for key, nested in list(value.items())[:_MAX_ITEMS]}
		if len(value) > _MAX_ITEMS:
			clipped["…"] = f"+{len(value) - _MAX_ITEMS} keys"
		return clipped
	if isinstance(value, (list, tuple, set, frozenset)):
		items = [_clip(item) for item in list(value)[:_MAX_ITEMS]]
		if len(value) > _MAX_ITEMS:
			items.append("…")
		return items
	if isinstance(value, datetime):
		return value.isoformat()
	return value


def _field(key: str, value: Any) -> Any:
	lowered = key.lower()
	if any(keyword in lowered for keyword in _REDACTED_KEYS):
		return "[redacted]"
	return _clip(value)


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per record: envelope, bound request fields, then extras."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for name, var in _CONTEXT.items():
			bound = var.get()
			if bound:
				payload[name] = bound
		if record.name.startswith(_AUDIT_PREFIX):
			payload["audit"] = True
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key not in _RECORD_ATTRS:
				payload[key] = _field(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Randomly sample info-level logs; warnings, errors and audit trails always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO or record.name.startswith(_AUDIT_PREFIX):
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	"""Configure root logger with JSON formatting and sampling."""
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
