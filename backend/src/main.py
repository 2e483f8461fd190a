"""FastAPI entrypoint exposing the RestroProcure planner."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.src.config import CORS_ORIGINS, LOG_LEVEL
from backend.src.routers.plan import router as plan_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="RestroProcure")

# Allow local frontend (Vite) to call the API from the browser.
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# The orchestrator is built on first use by the router dependency.
app.state.orchestrator = None

app.include_router(plan_router)


@app.get("/health")
def service_health() -> dict:
    """Health check endpoint."""

    return {"status": "healthy", "message": "RestroProcure API is up and running"}

# Run with: uvicorn backend.src.main:app --reload
