"""Content sanitizer: threat-signature detection and HTML entity encoding.

``validate`` runs the cheap length check first, then the signature scan, and
only then encodes. Encoding happens before stripping so that invisible
characters removed afterwards cannot splice entity-encoded fragments back
into markup.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Mapping, Optional

from abuseguard.domain.guard.audit import SecurityEventRecorder
from abuseguard.domain.guard.errors import GuardError, InvalidArgument, Outcome, ThreatDetected, TooLong
from abuseguard.domain.guard.models import THREAT_DETECTED
from abuseguard.obs import metrics
from abuseguard.settings import settings


class FieldKind(str, Enum):
	BODY = "body"
	TITLE = "title"
	COMMENT = "comment"
	NOTIFICATION = "notification"
	SYSTEM_MESSAGE = "system_message"


DEFAULT_MAX_LENGTHS: Mapping[FieldKind, int] = {
	FieldKind.BODY: 2000,
	FieldKind.TITLE: 100,
	FieldKind.COMMENT: 500,
	FieldKind.NOTIFICATION: 500,
	FieldKind.SYSTEM_MESSAGE: 1000,
}

_I = re.IGNORECASE

# Ordered most specific first; the first match names the signature class.
THREAT_SIGNATURES: tuple[tuple[str, re.Pattern[str]], ...] = (
	("dangerous_tag", re.compile(r"<\s*/?\s*(?:script|iframe|object|embed|form|input|meta|link|style|base)\b[^>]*>?", _I)),
	("xml_declaration", re.compile(r"<!\s*(?:entity|doctype)|<!\[cdata\[", _I)),
	("base64_payload", re.compile(r"data\s*:[^;]*;\s*base64\s*,", _I)),
	("script_uri", re.compile(r"\b(?:javascript|vbscript|livescript|data|mocha)\s*:", _I)),
	("event_handler", re.compile(r"\bon[a-z]+\s*=", _I)),
	("eval_call", re.compile(r"\b(?:eval|function|settimeout|setinterval|expression)\s*\(", _I)),
	("css_behavior", re.compile(r"\bbehavior\s*:", _I)),
	("encoded_payload", re.compile(r"&#x?[0-9a-f]+;|%[0-9a-f]{2}|\\u[0-9a-f]{4}|\\x[0-9a-f]{2}", _I)),
	# \t \n \r are legitimate text and are encoded rather than rejected
	("control_character", re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\u200b-\u200d\ufeff]")),
)

_ENCODINGS = (
	("<", "&lt;"),
	(">", "&gt;"),
	('"', "&quot;"),
	("'", "&#x27;"),
	("\n", "&#10;"),
	("\r", "&#13;"),
	("\t", "&#9;"),
)
_BARE_AMPERSAND = re.compile(r"&(?!(?:amp|lt|gt|quot|#x27|#10|#13|#9);)")
_STRIP = re.compile("[\x00-\x1f\x7f-\x9f\u200b-\u200d\ufeff]")
_WHITESPACE = re.compile(r"\s+")


def find_threat(text: str) -> Optional[str]:
	for name, pattern in THREAT_SIGNATURES:
		if pattern.search(text):
			return name
	return None


def looks_dangerous(text: str) -> bool:
	"""Fast predicate for call sites that only need a yes/no answer."""
	return find_threat(text) is not None


def encode(text: str) -> str:
	encoded = _BARE_AMPERSAND.sub("&amp;", text)
	for raw, entity in _ENCODINGS:
		encoded = encoded.replace(raw, entity)
	return encoded


def sanitize(text: str) -> str:
	"""Encode reserved characters then strip invisible ones. Idempotent."""
	return _STRIP.sub("", encode(text))


def sanitize_input(text: str) -> str:
	"""Normalise identifier-like input: trim, collapse whitespace, drop control characters."""
	collapsed = _WHITESPACE.sub(" ", text.strip())
	return _STRIP.sub("", collapsed)


class ContentSanitizer:
	def __init__(
		self,
		recorder: Optional[SecurityEventRecorder] = None,
		*,
		max_lengths: Optional[Mapping[FieldKind, int]] = None,
	) -> None:
		self._recorder = recorder
		limits = dict(DEFAULT_MAX_LENGTHS)
		limits[FieldKind.SYSTEM_MESSAGE] = settings.system_message_max_length
		if max_lengths:
			limits.update(max_lengths)
		self._max_lengths = limits

	def max_length(self, kind: FieldKind) -> int:
		return self._max_lengths[kind]

	def inspect(self, text: str, kind: FieldKind) -> Optional[GuardError]:
		"""Return the rejection for ``text`` without side effects, or None when it is clean."""
		if not text or not text.strip():
			return InvalidArgument("empty_content", detail={"field": kind.value})
		limit = self._max_lengths[kind]
		if len(text) > limit:
			return TooLong(kind.value, limit)
		signature = find_threat(text)
		if signature is not None:
			return ThreatDetected(signature)
		return None

	async def validate(
		self,
		text: str,
		kind: FieldKind,
		*,
		actor_id: Optional[str] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> Outcome[str]:
		rejection = self.inspect(text, kind)
		if rejection is None:
			metrics.guard_decision("sanitizer", "allow")
			return Outcome.allow(sanitize(text))
		metrics.guard_decision("sanitizer", rejection.reason)
		if isinstance(rejection, ThreatDetected):
			metrics.threat_detected(rejection.signature)
			if self._recorder is not None:
				await self._recorder.record(
					THREAT_DETECTED,
					actor_id,
					{"field": kind.value, "signature": rejection.signature, "content": text},
					ip=ip,
					user_agent=user_agent,
				)
		return Outcome.deny(rejection)


__all__ = [
	"ContentSanitizer",
	"DEFAULT_MAX_LENGTHS",
	"FieldKind",
	"THREAT_SIGNATURES",
	"encode",
	"find_threat",
	"looks_dangerous",
	"sanitize",
	"sanitize_input",
]
