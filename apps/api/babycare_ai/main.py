from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CONFIG
from .dependencies import build_orchestrator
from .routes import analysis as analysis_routes


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    owned = getattr(app.state, "orchestrator", None) is None
    if owned:
        app.state.orchestrator = build_orchestrator(CONFIG)
    try:
        yield
    finally:
        if owned:
            await app.state.orchestrator.aclose()
            app.state.orchestrator = None


app = FastAPI(
    title="Baby Care AI Analysis API",
    version="0.1.0",
    description="Quota-aware cloud analysis of infant care records with local fallback",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(analysis_routes.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
