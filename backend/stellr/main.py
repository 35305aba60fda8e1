"""FastAPI application for the Stellr matching core."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from stellr.api import compatibility, ops
from stellr.api.errors import install_error_handlers
from stellr.api.middleware_request_id import RequestIdMiddleware
from stellr.domain.matching import configure_postgres
from stellr.infra import postgres
from stellr.infra.redis import close_redis, redis_client
from stellr.obs import init as obs_init


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	app.state.match_service = configure_postgres(pool, redis_client)
	try:
		yield
	finally:
		await postgres.close_pool()
		await close_redis()


app = FastAPI(title="Stellr Matching Core", lifespan=lifespan)
install_error_handlers(app)
obs_init(app)

# Ensure every request carries an X-Request-Id and make it available on request.state
app.add_middleware(RequestIdMiddleware)

app.include_router(compatibility.router)
app.include_router(ops.router)
