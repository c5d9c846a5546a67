"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import SQLModel

from notifier.api.communications import router as communications_router
from notifier.api.habits import router as habits_router
from notifier.api.notifications import router as notifications_router
from notifier.api.webhooks import router as webhooks_router
from notifier.db.session import engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup."""
    # Import models to register them with SQLModel
    import notifier.models  # noqa: F401
    SQLModel.metadata.create_all(engine)
    yield

app = FastAPI(
    title="Visionary Notification Engine",
    description="Scheduling, multi-channel delivery and webhook ingestion",
    version="1.0.0",
    lifespan=lifespan,
)

# Register routers
app.include_router(notifications_router)
app.include_router(communications_router)
app.include_router(habits_router)
app.include_router(webhooks_router)


@app.get("/health")
def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
