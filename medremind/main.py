import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medremind.core.clock import SystemClock
from medremind.core.config import settings
from medremind.db.database import AsyncSessionLocal, Base, engine
from medremind.routes import auth, caretakers, history, medications, notifications, users
from medremind.scheduling.poller import PollerRegistry

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(session_factory=AsyncSessionLocal, db_engine=engine, clock=None) -> FastAPI:
    clock = clock or SystemClock()

    # ---- Startup / Shutdown ----
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized.")
        yield
        await app.state.pollers.stop_all()
        logger.info("Shutting down MedRemind API...")

    app = FastAPI(
        title="MedRemind API",
        version="1.0.0",
        description="Medication reminders, adherence tracking and caretaker alerts",
        lifespan=lifespan,
    )
    app.state.clock = clock
    app.state.pollers = PollerRegistry(session_factory, clock)

    # ---- CORS Setup ----
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Health Check ----
    @app.get("/", tags=["system"])
    async def health_check():
        return {"status": "ok", "service": "MedRemind API"}

    # ---- Register Routes ----
    app.include_router(auth.router, prefix="/auth", tags=["Auth"])
    app.include_router(users.router, prefix="/users", tags=["Users"])
    app.include_router(medications.router, prefix="/medications", tags=["Medications"])
    app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
    app.include_router(caretakers.router, prefix="/caretakers", tags=["Caretakers"])
    app.include_router(history.router, prefix="/history", tags=["History"])

    return app


configure_logging()
app = create_app()

# ---- Run Locally ----
if __name__ == "__main__":
    uvicorn.run("medremind.main:app", host="0.0.0.0", port=8000, reload=True)
