#!/usr/bin/env python3

import logging
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from circulate.routes import api
from circulate.core import db
from circulate.core.sweep import schedule_sweep
from circulate.configs import OPTIONS, CORS_ORIGINS, SWEEP_ENABLED, SCHEDULER_TIMEZONE
from circulate import __version__ as VERSION

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)

@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init()
    if SWEEP_ENABLED:
        schedule_sweep(scheduler)
        scheduler.start()
        logger.info(f"Overdue sweep scheduled (timezone {scheduler.timezone})")
    yield
    if scheduler.running:
        scheduler.shutdown()

app = FastAPI(
    title="Circulate API",
    description="Circulate: loan lifecycle and eligibility engine for physical library collections",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api.router, prefix="/v1/api")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("circulate.app:app", **OPTIONS)
