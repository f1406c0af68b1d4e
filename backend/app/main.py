"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import ops
from app.api.errors import install_error_handlers
from app.api.middleware_idempotency import IdempotencyMiddleware
from app.api.middleware_request_id import RequestIdMiddleware
from app.infra import postgres
from app.infra.redis import close_redis
from app.lending.api import router as lending_router
from app.lending.infra.scheduler import LendingScheduler
from app.lending.jobs.overdue_sweeper import OverdueSweeper
from app.obs import init as obs_init
from app.settings import settings

DEV_ORIGINS = [
	"http://localhost:3000",
	"http://127.0.0.1:3000",
	"http://localhost:5173",
	"http://127.0.0.1:5173",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	scheduler: LendingScheduler | None = None
	if settings.lending_overdue_sweep_minutes > 0:
		sweeper = OverdueSweeper()
		scheduler = LendingScheduler()
		scheduler.start()
		scheduler.schedule_every(
			"lending-overdue-sweep",
			sweeper.run_once,
			minutes=settings.lending_overdue_sweep_minutes,
		)
	app.state.lending_scheduler = scheduler
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		await postgres.close_pool()
		await close_redis()


app = FastAPI(title="Clubhub Lending", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins:
	allow_origins = DEV_ORIGINS if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	allow_origins = DEV_ORIGINS if settings.is_dev() else [o for o in allow_origins if o != "*"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

obs_init(app)

app.add_middleware(IdempotencyMiddleware)
# Outermost, so every response (including idempotency rejections) carries X-Request-Id.
app.add_middleware(RequestIdMiddleware)

app.include_router(ops.router, tags=["ops"])
app.include_router(lending_router)
