import asyncio

import pytest

from abuseguard.domain.guard.admin import BOOTSTRAP_PERMISSION, AdminPrivilegeGuard
from abuseguard.domain.guard.audit import AdminAuditLog, SecurityEventRecorder
from abuseguard.domain.guard.errors import (
	EscalationAttempt,
	FailedPrecondition,
	Internal,
	InvalidArgument,
	NotFound,
	PermissionDenied,
)
from abuseguard.domain.guard.models import (
	ADMIN_PRIVILEGES_GRANTED,
	ADMIN_PRIVILEGES_REVOKED,
	INITIAL_ADMIN_SETUP_COMPLETED,
	INITIAL_SUPER_ADMIN_CREATED,
	INVALID_SETUP_KEY,
	PRIVILEGE_ESCALATION_ATTEMPT,
	UNAUTHORIZED_ADMIN_ACCESS,
	AdminLevel,
	ClaimsAuthority,
	StoredRole,
	UserProfile,
)
from abuseguard.domain.guard.store import InMemoryGuardRepository
from abuseguard.settings import settings


class FailingAuditRepository(InMemoryGuardRepository):
	async def append_admin_audit(self, entry):
		raise ConnectionError("audit store unreachable")


class FailingEventRepository(InMemoryGuardRepository):
	async def append_security_event(self, event):
		raise ConnectionError("event store unreachable")


class FailingMirrorRepository(InMemoryGuardRepository):
	async def set_stored_role(self, user_id, role):
		raise ConnectionError("document store unreachable")


def _guard(identity, repo):
	return AdminPrivilegeGuard(identity, repo, SecurityEventRecorder(repo), AdminAuditLog(repo))


@pytest.fixture
def admin_guard(identity, repo):
	return _guard(identity, repo)


@pytest.fixture
def root(make_user, identity):
	make_user("root")
	identity.claims["root"] = ClaimsAuthority(super_admin=True, admin=True)
	return "root"


def _kinds(repo):
	return [event.kind for event in repo.security_events]


@pytest.mark.asyncio
async def test_stored_role_without_claims_is_escalation(admin_guard, make_user, repo):
	make_user("mallory", stored_role=StoredRole(role="super_admin"))
	outcome = await admin_guard.authorize("mallory", "delete_notifications", operation="delete")
	assert isinstance(outcome.rejection, EscalationAttempt)
	assert outcome.rejection.reason == "privilege_escalation_attempt"
	assert _kinds(repo) == [PRIVILEGE_ESCALATION_ATTEMPT]
	detail = repo.security_events[0].detail
	assert detail["claims"] == {}
	assert detail["stored_role"]["role"] == "super_admin"
	assert detail["permission"] == "delete_notifications"


@pytest.mark.asyncio
async def test_stored_permission_list_alone_is_escalation(admin_guard, make_user):
	make_user("mallory", stored_role=StoredRole(permissions=frozenset({"delete_notifications"})))
	outcome = await admin_guard.authorize("mallory", "delete_notifications")
	assert isinstance(outcome.rejection, EscalationAttempt)


@pytest.mark.asyncio
async def test_plain_user_records_unauthorized_access(admin_guard, make_user, repo):
	make_user("bob")
	outcome = await admin_guard.authorize("bob", "create_system_notifications")
	assert type(outcome.rejection) is PermissionDenied
	assert outcome.rejection.reason == "insufficient_privileges"
	assert _kinds(repo) == [UNAUTHORIZED_ADMIN_ACCESS]


@pytest.mark.asyncio
async def test_claims_decide_even_when_stored_role_disagrees(admin_guard, make_user, identity, repo):
	make_user("ops")
	identity.claims["ops"] = ClaimsAuthority(admin=True)
	outcome = await admin_guard.authorize("ops", "delete_notifications")
	assert outcome.ok
	assert repo.security_events == []


@pytest.mark.asyncio
async def test_partial_claims_denied_without_event(admin_guard, make_user, identity, repo):
	make_user("mod")
	identity.claims["mod"] = ClaimsAuthority(moderator=True, permissions=frozenset({"view_reports"}))
	outcome = await admin_guard.authorize("mod", "delete_notifications")
	assert outcome.rejection.reason == "insufficient_privileges"
	assert repo.security_events == []


@pytest.mark.asyncio
async def test_grant_writes_claims_audit_and_mirror(admin_guard, root, make_user, identity, repo):
	make_user("helper")
	outcome = await admin_guard.grant(root, "helper", AdminLevel.ADMIN, permissions=["export_data"], reason="on-call rotation")
	assert outcome.ok
	assert "create_system_notifications" in outcome.value
	assert "export_data" in outcome.value

	claims = identity.claims["helper"]
	assert claims.admin and not claims.super_admin
	assert repo.users["helper"].stored_role.role == "admin"

	entry = repo.admin_audit[-1]
	assert entry.action == ADMIN_PRIVILEGES_GRANTED
	assert entry.executor_id == "root"
	assert entry.target_user_id == "helper"
	assert entry.reason == "on-call rotation"
	assert entry.prior_permissions == ()
	assert "export_data" in entry.new_permissions


@pytest.mark.asyncio
async def test_grant_requires_super_admin(admin_guard, make_user, identity):
	make_user("ops")
	make_user("helper")
	identity.claims["ops"] = ClaimsAuthority(admin=True, permissions=frozenset({"manage_admin_privileges"}))
	outcome = await admin_guard.grant("ops", "helper", AdminLevel.MODERATOR, reason="help")
	assert outcome.rejection.reason == "insufficient_privileges"
	assert "helper" not in identity.claims


@pytest.mark.asyncio
async def test_grant_requires_reason(admin_guard, root, make_user, identity):
	make_user("helper")
	outcome = await admin_guard.grant(root, "helper", AdminLevel.ADMIN, reason="   ")
	assert isinstance(outcome.rejection, InvalidArgument)
	assert outcome.rejection.reason == "reason_required"
	assert "helper" not in identity.claims


@pytest.mark.asyncio
async def test_grant_unknown_target(admin_guard, root):
	outcome = await admin_guard.grant(root, "ghost", AdminLevel.ADMIN, reason="promote")
	assert isinstance(outcome.rejection, NotFound)
	assert outcome.rejection.reason == "target_not_found"


@pytest.mark.asyncio
async def test_self_revocation_refused(admin_guard, root, repo):
	outcome = await admin_guard.revoke(root, root, reason="stepping down")
	assert isinstance(outcome.rejection, InvalidArgument)
	assert outcome.rejection.reason == "self_revocation"
	assert repo.admin_audit == []


@pytest.mark.asyncio
async def test_revocation_applies_immediately(admin_guard, root, make_user, identity, repo):
	make_user("helper")
	assert (await admin_guard.grant(root, "helper", AdminLevel.ADMIN, reason="promote")).ok
	assert (await admin_guard.authorize("helper", "delete_notifications")).ok

	outcome = await admin_guard.revoke(root, "helper", reason="left the team")
	assert outcome.ok
	assert "helper" not in identity.claims
	assert repo.users["helper"].stored_role == StoredRole()
	entry = repo.admin_audit[-1]
	assert entry.action == ADMIN_PRIVILEGES_REVOKED
	assert "delete_notifications" in entry.prior_permissions

	denied = await admin_guard.authorize("helper", "delete_notifications")
	assert denied.rejection.reason == "insufficient_privileges"


@pytest.mark.asyncio
async def test_bootstrap_once(admin_guard, make_user, identity, repo):
	make_user("founder")
	make_user("latecomer")
	outcome = await admin_guard.bootstrap("founder", "founder", reason="initial setup")
	assert outcome.ok
	assert BOOTSTRAP_PERMISSION in outcome.value
	assert identity.claims["founder"].super_admin
	assert repo.users["founder"].stored_role.role == "super_admin"
	assert [entry.action for entry in repo.admin_audit] == [INITIAL_SUPER_ADMIN_CREATED]
	assert INITIAL_ADMIN_SETUP_COMPLETED in _kinds(repo)

	again = await admin_guard.bootstrap("latecomer", "latecomer", reason="me too")
	assert isinstance(again.rejection, FailedPrecondition)
	assert again.rejection.reason == "admins_already_exist"
	assert "latecomer" not in identity.claims


@pytest.mark.asyncio
async def test_bootstrap_refused_after_any_grant(admin_guard, root, make_user):
	make_user("helper")
	make_user("founder")
	assert (await admin_guard.grant(root, "helper", AdminLevel.MODERATOR, reason="help")).ok
	outcome = await admin_guard.bootstrap("founder", "founder", reason="setup")
	assert outcome.rejection.reason == "admins_already_exist"


@pytest.mark.asyncio
async def test_concurrent_bootstrap_yields_one_admin(admin_guard, make_user, identity):
	make_user("a")
	make_user("b")
	results = await asyncio.gather(
		admin_guard.bootstrap("a", "a", reason="setup"),
		admin_guard.bootstrap("b", "b", reason="setup"),
	)
	assert sorted(outcome.ok for outcome in results) == [False, True]
	assert len([claims for claims in identity.claims.values() if claims.super_admin]) == 1


@pytest.mark.asyncio
async def test_bootstrap_checks_setup_key(admin_guard, make_user, repo, monkeypatch):
	monkeypatch.setattr(settings, "initial_admin_setup_key", "correct-horse")
	make_user("founder")
	outcome = await admin_guard.bootstrap("founder", "founder", reason="setup", setup_key="battery-staple")
	assert isinstance(outcome.rejection, PermissionDenied)
	assert outcome.rejection.reason == "invalid_setup_key"
	assert _kinds(repo) == [INVALID_SETUP_KEY]
	assert repo.security_events[0].detail["ip"] is None

	outcome = await admin_guard.bootstrap("founder", "founder", reason="setup", setup_key="correct-horse")
	assert outcome.ok


@pytest.mark.asyncio
async def test_bootstrap_disabled_in_production_without_key(admin_guard, make_user, monkeypatch):
	monkeypatch.setattr(settings, "environment", "production")
	make_user("founder")
	outcome = await admin_guard.bootstrap("founder", "founder", reason="setup")
	assert isinstance(outcome.rejection, FailedPrecondition)
	assert outcome.rejection.reason == "bootstrap_disabled"


@pytest.mark.asyncio
async def test_audit_failure_rolls_back_claims(identity):
	repo = FailingAuditRepository()
	guard = _guard(identity, repo)
	repo.users["root"] = UserProfile(id="root")
	repo.users["helper"] = UserProfile(id="helper")
	identity.claims["root"] = ClaimsAuthority(super_admin=True)

	outcome = await guard.grant("root", "helper", AdminLevel.ADMIN, reason="promote")
	assert isinstance(outcome.rejection, Internal)
	assert outcome.rejection.reason == "audit_write_failed"
	assert "helper" not in identity.claims
	assert repo.users["helper"].stored_role == StoredRole()


@pytest.mark.asyncio
async def test_security_event_write_failure_is_not_raised(identity):
	repo = FailingEventRepository()
	guard = _guard(identity, repo)
	repo.users["bob"] = UserProfile(id="bob")
	outcome = await guard.authorize("bob", "delete_notifications")
	assert outcome.rejection.reason == "insufficient_privileges"


@pytest.mark.asyncio
async def test_stored_role_mirror_is_best_effort(identity):
	repo = FailingMirrorRepository()
	guard = _guard(identity, repo)
	repo.users["root"] = UserProfile(id="root")
	repo.users["helper"] = UserProfile(id="helper")
	identity.claims["root"] = ClaimsAuthority(super_admin=True)

	outcome = await guard.grant("root", "helper", AdminLevel.ADMIN, reason="promote")
	assert outcome.ok
	assert identity.claims["helper"].admin

@pytest.mark.asyncio
async def test_self_grant_cannot_lower_level(admin_guard, root, identity, repo):
	outcome = await admin_guard.grant(root, root, AdminLevel.MODERATOR, reason="quiet week")
	assert isinstance(outcome.rejection, InvalidArgument)
	assert outcome.rejection.reason == "self_demotion"
	assert identity.claims[root].super_admin
	assert repo.admin_audit == []

	assert (await admin_guard.grant(root, root, AdminLevel.SUPER_ADMIN, reason="refresh")).ok
	assert identity.claims[root].super_admin


@pytest.mark.asyncio
async def test_admin_events_carry_client_origin(admin_guard, make_user, repo, monkeypatch):
	make_user("bob")
	make_user("mallory", stored_role=StoredRole(role="admin"))
	await admin_guard.authorize("bob", "delete_notifications", ip="198.51.100.4", user_agent="curl/8.0")
	await admin_guard.authorize("mallory", "delete_notifications", ip="198.51.100.5", user_agent="bot/0.1")
	monkeypatch.setattr(settings, "initial_admin_setup_key", "correct-horse")
	await admin_guard.bootstrap("bob", "bob", reason="setup", setup_key="nope", ip="198.51.100.6", user_agent="curl/8.0")

	assert _kinds(repo) == [UNAUTHORIZED_ADMIN_ACCESS, PRIVILEGE_ESCALATION_ATTEMPT, INVALID_SETUP_KEY]
	origins = [(event.detail["ip"], event.detail["user_agent"]) for event in repo.security_events]
	assert origins == [
		("198.51.100.4", "curl/8.0"),
		("198.51.100.5", "bot/0.1"),
		("198.51.100.6", "curl/8.0"),
	]
