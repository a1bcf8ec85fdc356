from __future__ import annotations

from fastapi import FastAPI, HTTPException

from app.api.routers import farm_delete
from app.infra.audit import AuditMiddleware
from app.infra.db import check_db_ready

app = FastAPI(
    title="farm-integrity",
    description="Delete preview and cascading soft delete for the farm infrastructure hierarchy.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(farm_delete.router, prefix="/api/farm", tags=["farm"])


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
