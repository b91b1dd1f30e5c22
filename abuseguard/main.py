"""FastAPI application for the abuse-guard service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from abuseguard import container
from abuseguard.api import admin, notifications, ops, posts
from abuseguard.api.errors import install_error_handlers
from abuseguard.infra import postgres
from abuseguard.infra.migrations import ensure_schema
from abuseguard.obs import init as obs_init
from abuseguard.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = None
	if settings.storage_backend == "postgres":
		pool = await postgres.init_pool()
		await ensure_schema(pool)
	container.configure_from_settings(pool)
	try:
		yield
	finally:
		await postgres.close_pool()


app = FastAPI(title="Abuse Guard", lifespan=lifespan)
install_error_handlers(app)
obs_init(app)

app.include_router(notifications.router)
app.include_router(admin.router)
app.include_router(posts.router)
app.include_router(ops.router)
