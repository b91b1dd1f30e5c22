"""Schema for the Postgres-backed guard store."""

from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger("abuseguard.infra.migrations")

SCHEMA = """
CREATE TABLE IF NOT EXISTS guard_user (
	id TEXT PRIMARY KEY,
	display_name TEXT,
	created_at TIMESTAMPTZ,
	is_verified BOOLEAN NOT NULL DEFAULT FALSE,
	followers_count INTEGER NOT NULL DEFAULT 0,
	stored_role TEXT NOT NULL DEFAULT 'none',
	stored_permissions TEXT[] NOT NULL DEFAULT '{}',
	unread_notification_count INTEGER NOT NULL DEFAULT 0 CHECK (unread_notification_count >= 0)
);

CREATE TABLE IF NOT EXISTS guard_claims (
	user_id TEXT PRIMARY KEY,
	claims JSONB NOT NULL DEFAULT '{}'::jsonb,
	updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS guard_block (
	blocker_id TEXT NOT NULL,
	blocked_id TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
	PRIMARY KEY (blocker_id, blocked_id)
);

CREATE TABLE IF NOT EXISTS guard_post (
	id TEXT PRIMARY KEY,
	author_id TEXT NOT NULL,
	content TEXT NOT NULL,
	title TEXT,
	post_type TEXT NOT NULL DEFAULT 'casual',
	comments_count INTEGER NOT NULL DEFAULT 0,
	created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS guard_comment (
	id TEXT PRIMARY KEY,
	post_id TEXT NOT NULL,
	author_id TEXT NOT NULL,
	content TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS guard_notification (
	id TEXT PRIMARY KEY,
	user_id TEXT NOT NULL,
	from_user_id TEXT NOT NULL,
	type TEXT NOT NULL,
	message TEXT NOT NULL,
	metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
	is_read BOOLEAN NOT NULL DEFAULT FALSE,
	created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_guard_notification_user ON guard_notification(user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS guard_security_event (
	id TEXT PRIMARY KEY,
	kind TEXT NOT NULL,
	actor_id TEXT,
	detail JSONB NOT NULL DEFAULT '{}'::jsonb,
	created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_guard_security_event_kind ON guard_security_event(kind, created_at DESC);

CREATE TABLE IF NOT EXISTS guard_admin_audit (
	id TEXT PRIMARY KEY,
	action TEXT NOT NULL,
	executor_id TEXT NOT NULL,
	target_user_id TEXT,
	prior_permissions TEXT[] NOT NULL DEFAULT '{}',
	new_permissions TEXT[] NOT NULL DEFAULT '{}',
	reason TEXT NOT NULL,
	detail JSONB NOT NULL DEFAULT '{}'::jsonb,
	created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_guard_admin_audit_action ON guard_admin_audit(action);
"""


async def ensure_schema(pool: asyncpg.Pool) -> None:
	async with pool.acquire() as conn:
		await conn.execute(SCHEMA)
	logger.info("schema_ready")
