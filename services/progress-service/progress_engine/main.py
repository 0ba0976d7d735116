"""Progress Service API - FastAPI with DynamoDB: points, streaks, achievements, goals, leaderboards"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from progress_engine import dynamo, scheduler
from progress_engine.config import get_settings
from progress_engine.logic import achievement_service, leaderboard_service
from progress_engine.middleware import RequestIDMiddleware
from progress_engine.routers import celebrations, events, goals, leaderboards, profile
from progress_engine.schemas import HealthResponse

settings = get_settings()
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Create tables (LocalStack / local only) and seed the default catalogue
      2. Start the background scheduler
    Shutdown:
      - Stop the scheduler
    """
    if settings.CREATE_TABLES_ON_STARTUP:
        try:
            dynamo.create_tables_if_not_exist()
            achievement_service.seed_default_achievements()
            leaderboard_service.seed_default_leaderboards()
        except Exception as e:
            logger.error(f"Error bootstrapping tables: {e}", exc_info=True)

    if settings.SCHEDULER_ENABLED:
        scheduler.create_scheduler()
        scheduler.start_scheduler()

    yield

    scheduler.stop_scheduler()


app = FastAPI(
    title="Progress Service API",
    description="Achievement, progress and leaderboard engine",
    version=settings.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestIDMiddleware)
app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

app.include_router(events.router, prefix="/api/v1")
app.include_router(profile.router, prefix="/api/v1")
app.include_router(goals.router, prefix="/api/v1")
app.include_router(celebrations.router, prefix="/api/v1")
app.include_router(leaderboards.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"service": "progress-service", "status": "running", "version": settings.VERSION}


@app.get("/health", response_model=HealthResponse)
async def health():
    try:
        client = dynamo.db_client.dynamodb.meta.client
        client.describe_table(TableName=settings.DYNAMODB_GAMIFICATION_TABLE)
        client.describe_table(TableName=settings.DYNAMODB_LEDGER_TABLE)
        return HealthResponse(status="healthy", dynamodb="connected")
    except Exception as e:
        logger.warning(f"Health check DynamoDB connection failed: {str(e)}")
        # Still healthy for load balancer checks; DynamoDB may be temporarily unavailable
        return HealthResponse(status="healthy", dynamodb="unavailable", details={"warning": str(e)[:100]})
