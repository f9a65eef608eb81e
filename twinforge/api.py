# -*- coding: utf-8 -*-
"""
TwinForge API

Streaming generation of meal plans, recipe batches and shopping lists.
"""

from __future__ import annotations

import os
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .app_db import init_app_db
from .config import settings
from .generation import registry
from .generation.api import router as generation_router

app = FastAPI(
    title="TwinForge",
    description="Streaming generation pipelines with placeholder skeletons and recovery",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup_init_db() -> None:
    init_app_db(settings.app_db_path)


@app.on_event("shutdown")
async def _shutdown_pipelines() -> None:
    if registry.pipeline_registry is not None:
        await registry.pipeline_registry.shutdown()


# Ensure the app DB exists even when lifespan events are not triggered (e.g. some test clients).
init_app_db(settings.app_db_path)

app.include_router(generation_router)


@app.get("/api/health")
def health_check():
    return {
        "status": "ok",
        "version": "1.0.0",
        "timestamp": datetime.now().isoformat(),
    }


def run() -> None:
    """Console entry point (used by pyproject [project.scripts])."""
    import uvicorn

    host = os.environ.get("TWINFORGE_HOST") or os.environ.get("HOST") or "127.0.0.1"
    port_raw = os.environ.get("TWINFORGE_PORT") or os.environ.get("PORT") or "8000"
    try:
        port = int(port_raw)
    except ValueError:
        port = 8000

    uvicorn.run("twinforge.api:app", host=host, port=port, reload=False)
