"""
Mission Engine - FastAPI Backend
REST API for missions, task operations, quotas, engagement webhooks and the tick trigger.

Run: uvicorn mission_engine.api.app:app --reload --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mission_engine import config
from mission_engine.api.routers import engagement, missions, quotas, tasks, tick
from mission_engine.db import connection
from mission_engine.db.init_db import init_db
from mission_engine.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    yield


app = FastAPI(
    title="Mission Engine",
    description="Task orchestration for lead-generation missions.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─── ROUTERS ─────────────────────────────────────────────────
app.include_router(missions.router)
app.include_router(tasks.router)
app.include_router(quotas.router)
app.include_router(engagement.router)
app.include_router(tick.router)


# ─── HEALTH CHECK ───────────────────────────────────────────────

@app.get("/api/health")
def health():
    try:
        with connection.get_db_conn() as conn:
            tables = conn.execute(
                "SELECT COUNT(*) FROM sqlite_master WHERE type='table'"
            ).fetchone()[0]
            pending = conn.execute(
                "SELECT COUNT(*) FROM tasks WHERE status='pending'"
            ).fetchone()[0]
        return {
            "status": "healthy",
            "tables": tables,
            "pending_tasks": pending,
            "db_path": connection.DB_PATH,
        }
    except Exception as e:
        return JSONResponse(status_code=500, content={"status": "unhealthy", "error": str(e)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
