import pytest

from abuseguard.domain.guard.audit import SecurityEventRecorder
from abuseguard.domain.guard.errors import InvalidArgument, ThreatDetected, TooLong
from abuseguard.domain.guard.models import THREAT_DETECTED
from abuseguard.domain.guard.sanitizer import (
	ContentSanitizer,
	FieldKind,
	encode,
	find_threat,
	looks_dangerous,
	sanitize,
	sanitize_input,
)
from abuseguard.settings import settings


@pytest.fixture
def sanitizer(repo):
	return ContentSanitizer(SecurityEventRecorder(repo))


@pytest.mark.parametrize(
	"text,signature",
	[
		("<script>alert(1)</script>", "dangerous_tag"),
		("< IFRAME src=//evil>", "dangerous_tag"),
		("<!DOCTYPE foo [<!ENTITY x 'y'>]>", "xml_declaration"),
		("data:text/html;base64,PHNjcmlwdD4=", "base64_payload"),
		("click javascript:alert(1)", "script_uri"),
		("VBScript:msgbox", "script_uri"),
		('<img src=x onerror="alert(1)">', "event_handler"),
		("eval(atob(x))", "eval_call"),
		("setTimeout (go, 1)", "eval_call"),
		("behavior: url(x.htc)", "css_behavior"),
		("&#60;script&#62;", "encoded_payload"),
		("%3Cscript%3E", "encoded_payload"),
		("\\u003cscript", "encoded_payload"),
		("hello\x00world", "control_character"),
		("zero\u200bwidth", "control_character"),
		("bom\ufeff", "control_character"),
	],
)
def test_find_threat_names_signature(text, signature):
	assert find_threat(text) == signature
	assert looks_dangerous(text)


@pytest.mark.parametrize(
	"text",
	[
		"Great post, thanks!",
		"Tom & Jerry <3",
		"line one\nline two\tindented\r\n",
		"Someone = one of us",
		"data science is fun",
	],
)
def test_find_threat_allows_ordinary_text(text):
	assert find_threat(text) is None
	assert not looks_dangerous(text)


def test_encode_reserved_characters():
	assert encode("<b>\"Tom\" & 'Jerry'</b>") == "&lt;b&gt;&quot;Tom&quot; &amp; &#x27;Jerry&#x27;&lt;/b&gt;"
	assert encode("a\nb\rc\td") == "a&#10;b&#13;c&#9;d"


@pytest.mark.parametrize(
	"raw",
	[
		"Great post, thanks!",
		"Tom & \"Jerry\" <b>'s\nfriend",
		"fish && chips & peas",
		"already &amp; encoded &lt;b&gt;",
		"partial &amp and &#10 and &#x27",
		"&&amp;&amp",
		"quotes \"double\" and 'single'",
		"crlf\r\nand\ttab",
		"café naïve 日本語 \U0001f389",
		"stray\u00a0nbsp",
		"&\u200bamp;",
		"",
	],
)
def test_sanitize_is_idempotent(raw):
	once = sanitize(raw)
	assert sanitize(once) == once


def test_sanitize_encodes_reserved_characters():
	once = sanitize("Tom & \"Jerry\" <b>'s\nfriend")
	assert once == "Tom &amp; &quot;Jerry&quot; &lt;b&gt;&#x27;s&#10;friend"


def test_sanitize_strips_invisible_characters_after_encoding():
	assert sanitize("a\u200bb\x07c") == "abc"


def test_sanitize_input_trims_and_collapses():
	assert sanitize_input("  hello \n  world\x00 ") == "hello world"
	assert sanitize_input("") == ""


@pytest.mark.asyncio
async def test_validate_returns_encoded_text(sanitizer, repo):
	outcome = await sanitizer.validate("Tom & Jerry", FieldKind.NOTIFICATION, actor_id="u1")
	assert outcome.ok
	assert outcome.value == "Tom &amp; Jerry"
	assert repo.security_events == []


@pytest.mark.asyncio
async def test_validate_threat_records_exactly_one_event(sanitizer, repo):
	outcome = await sanitizer.validate(
		"<script>steal()</script>",
		FieldKind.COMMENT,
		actor_id="u1",
		ip="198.51.100.7",
	)
	assert not outcome.ok
	assert isinstance(outcome.rejection, ThreatDetected)
	assert outcome.rejection.signature == "dangerous_tag"
	assert len(repo.security_events) == 1
	event = repo.security_events[0]
	assert event.kind == THREAT_DETECTED
	assert event.actor_id == "u1"
	assert event.detail["field"] == "comment"
	assert event.detail["signature"] == "dangerous_tag"
	assert event.detail["ip"] == "198.51.100.7"


@pytest.mark.asyncio
async def test_length_check_runs_before_signature_scan(sanitizer, repo):
	text = "<script>" + "a" * 600
	outcome = await sanitizer.validate(text, FieldKind.NOTIFICATION, actor_id="u1")
	assert isinstance(outcome.rejection, TooLong)
	assert outcome.rejection.max_length == 500
	assert outcome.rejection.field_kind == "notification"
	assert repo.security_events == []


@pytest.mark.asyncio
async def test_exact_limit_is_accepted(sanitizer):
	outcome = await sanitizer.validate("a" * 100, FieldKind.TITLE)
	assert outcome.ok
	outcome = await sanitizer.validate("a" * 101, FieldKind.TITLE)
	assert isinstance(outcome.rejection, TooLong)


@pytest.mark.asyncio
async def test_blank_content_rejected(sanitizer):
	outcome = await sanitizer.validate("   ", FieldKind.BODY)
	assert isinstance(outcome.rejection, InvalidArgument)
	assert outcome.rejection.reason == "empty_content"


def test_limits_can_be_overridden(monkeypatch):
	monkeypatch.setattr(settings, "system_message_max_length", 20)
	custom = ContentSanitizer(max_lengths={FieldKind.TITLE: 10})
	assert custom.max_length(FieldKind.SYSTEM_MESSAGE) == 20
	assert custom.max_length(FieldKind.TITLE) == 10
	assert custom.max_length(FieldKind.BODY) == 2000
	assert isinstance(custom.inspect("x" * 11, FieldKind.TITLE), TooLong)


def test_inspect_has_no_side_effects(repo):
	sanitizer = ContentSanitizer(SecurityEventRecorder(repo))
	rejection = sanitizer.inspect("javascript:void(0)", FieldKind.BODY)
	assert isinstance(rejection, ThreatDetected)
	assert repo.security_events == []
