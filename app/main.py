from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException

from app.api.routers import access, identity, policies
from app.infra.audit import AuditMiddleware
from app.infra.db import check_db_ready

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="access-control",
    description="Role and override based permission resolution for dashboards, pages and policies.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(access.router, prefix="/api/access", tags=["access"])
app.include_router(policies.router, prefix="/api/policies", tags=["policies"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
