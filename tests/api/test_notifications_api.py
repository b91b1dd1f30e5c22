import pytest

from abuseguard.domain.guard.models import IP_RATE_LIMIT_EXCEEDED, THREAT_DETECTED
from abuseguard.infra.jwt import encode_access
from abuseguard.settings import settings


def _headers(user_id: str) -> dict[str, str]:
	return {"X-User-Id": user_id}


@pytest.fixture
def pair(make_user):
	make_user("alice", age_hours=72)
	make_user("bob", age_hours=72)


@pytest.mark.asyncio
async def test_create_notification_with_dev_header(api_client, pair, repo):
	response = await api_client.post(
		"/notifications",
		json={"targetUserId": "bob", "type": "follow", "message": "hi there"},
		headers=_headers("alice"),
	)
	assert response.status_code == 201
	notification_id = response.json()["notificationId"]
	assert repo.notifications[notification_id].from_user_id == "alice"


@pytest.mark.asyncio
async def test_create_notification_with_bearer_token(api_client, pair):
	token = encode_access({"sub": "alice"})
	response = await api_client.post(
		"/notifications",
		json={"targetUserId": "bob", "type": "mention", "message": "see this"},
		headers={"Authorization": f"Bearer {token}"},
	)
	assert response.status_code == 201


@pytest.mark.asyncio
async def test_missing_credentials_is_401(api_client, pair):
	response = await api_client.post("/notifications", json={"targetUserId": "bob", "type": "follow", "message": "hi"})
	assert response.status_code == 401
	body = response.json()
	assert body["code"] == "unauthenticated"
	assert body["detail"] == "missing_credentials"
	assert body["request_id"]


@pytest.mark.asyncio
async def test_invalid_token_is_401(api_client, pair):
	response = await api_client.post(
		"/notifications",
		json={"targetUserId": "bob", "type": "follow", "message": "hi"},
		headers={"Authorization": "Bearer not-a-jwt"},
	)
	assert response.status_code == 401
	assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_dev_header_ignored_outside_dev(api_client, pair, monkeypatch):
	monkeypatch.setattr(settings, "environment", "production")
	response = await api_client.post(
		"/notifications",
		json={"targetUserId": "bob", "type": "follow", "message": "hi"},
		headers=_headers("alice"),
	)
	assert response.status_code == 401


@pytest.mark.asyncio
async def test_threat_is_400(api_client, pair):
	response = await api_client.post(
		"/notifications",
		json={"targetUserId": "bob", "type": "follow", "message": "<iframe src=//x>"},
		headers=_headers("alice"),
	)
	assert response.status_code == 400
	body = response.json()
	assert body["code"] == "invalid_argument"
	assert body["detail"] == "threat_detected"


@pytest.mark.asyncio
async def test_rate_limited_is_429_with_retry_after(api_client, make_user):
	make_user("newbie", age_hours=1)
	make_user("bob")
	payload = {"targetUserId": "bob", "type": "follow", "message": "hi"}
	for _ in range(settings.rate_actor_new_account_limit):
		response = await api_client.post("/notifications", json=payload, headers=_headers("newbie"))
		assert response.status_code == 201
	response = await api_client.post("/notifications", json=payload, headers=_headers("newbie"))
	assert response.status_code == 429
	assert response.headers["Retry-After"] == "120"
	body = response.json()
	assert body["code"] == "resource_exhausted"
	assert body["retry_after_seconds"] == 120


@pytest.mark.asyncio
async def test_request_validation_is_422(api_client, pair):
	response = await api_client.post("/notifications", json={"targetUserId": "bob"}, headers=_headers("alice"))
	assert response.status_code == 422
	assert response.json()["code"] == "invalid_argument"


@pytest.mark.asyncio
async def test_mark_read(api_client, pair):
	created = await api_client.post(
		"/notifications",
		json={"targetUserId": "bob", "type": "follow", "message": "hi"},
		headers=_headers("alice"),
	)
	notification_id = created.json()["notificationId"]

	denied = await api_client.post(f"/notifications/{notification_id}/read", headers=_headers("alice"))
	assert denied.status_code == 403

	response = await api_client.post(f"/notifications/{notification_id}/read", headers=_headers("bob"))
	assert response.status_code == 200
	assert response.json() == {"updated": True}

	missing = await api_client.post("/notifications/nope/read", headers=_headers("bob"))
	assert missing.status_code == 404


@pytest.mark.asyncio
async def test_request_id_is_echoed(api_client, pair):
	response = await api_client.post(
		"/notifications",
		json={"targetUserId": "alice", "type": "follow", "message": "hi"},
		headers={**_headers("alice"), "X-Request-Id": "req-123"},
	)
	assert response.status_code == 400
	assert response.json()["detail"] == "self_notification"
	assert response.json()["request_id"] == "req-123"
	assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_create_post_and_comment(api_client, make_user):
	make_user("author")
	post = await api_client.post("/posts", json={"content": "Hello & welcome", "title": "Intro"}, headers=_headers("author"))
	assert post.status_code == 201
	assert post.json()["content"] == "Hello &amp; welcome"

	comment = await api_client.post(
		f"/posts/{post.json()['id']}/comments",
		json={"content": "first!"},
		headers=_headers("author"),
	)
	assert comment.status_code == 201
	assert comment.json()["post_id"] == post.json()["id"]


@pytest.mark.asyncio
async def test_health_and_metrics(api_client):
	live = await api_client.get("/health/live")
	assert live.status_code == 200
	assert live.json() == {"status": "ok"}

	ready = await api_client.get("/health/ready")
	assert ready.status_code == 200

	metrics = await api_client.get("/metrics")
	assert metrics.status_code == 200
	assert "abuseguard_decisions_total" in metrics.text


@pytest.mark.asyncio
async def test_forwarded_header_does_not_split_ip_window(api_client, make_user, repo, monkeypatch):
	monkeypatch.setattr(settings, "rate_ip_limit", 2)
	make_user("alice")
	targets = [f"target-{i}" for i in range(4)]
	for target in targets:
		make_user(target)

	statuses = []
	for i, target in enumerate(targets):
		response = await api_client.post(
			"/notifications",
			json={"targetUserId": target, "type": "follow", "message": "hi"},
			headers={**_headers("alice"), "X-Forwarded-For": f"203.0.113.{i}", "User-Agent": "spam-bot/1.0"},
		)
		statuses.append(response.status_code)
	assert statuses == [201, 201, 429, 429]

	events = [event for event in repo.security_events if event.kind == IP_RATE_LIMIT_EXCEEDED]
	assert len(events) == 2
	assert events[0].detail["ip"] == "127.0.0.1"
	assert events[0].detail["user_agent"] == "spam-bot/1.0"


@pytest.mark.asyncio
async def test_threat_event_carries_client_origin(api_client, pair, repo):
	response = await api_client.post(
		"/notifications",
		json={"targetUserId": "bob", "type": "follow", "message": "<script>x()</script>"},
		headers={**_headers("alice"), "User-Agent": "curl/8.0"},
	)
	assert response.status_code == 400
	(event,) = repo.security_events
	assert event.kind == THREAT_DETECTED
	assert event.detail["ip"] == "127.0.0.1"
	assert event.detail["user_agent"] == "curl/8.0"
