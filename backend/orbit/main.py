# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import logging
import sentry_sdk
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from orbit import config
from orbit.database import engine, Base, SessionLocal
from orbit.routers import recurring_patterns, items, gamification, leaderboard, cron
from orbit.services.gamification import get_gamification_service
from orbit.utils.cache import HybridCache

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
if config.SENTRY_DSN:
    sentry_sdk.init(
        dsn=config.SENTRY_DSN,
        traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
        environment=config.ENVIRONMENT,
    )

# Create database tables
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown."""
    if os.getenv("ENABLE_ACHIEVEMENT_SEEDING", "true").lower() == "true":
        db = SessionLocal()
        try:
            added = get_gamification_service().seed_achievements(db)
            logger.info("Achievement catalogue ready (%d added)", added)
        finally:
            db.close()
    else:
        logger.info("Achievement seeding disabled via ENABLE_ACHIEVEMENT_SEEDING=false")

    logger.info("Leaderboard cache backend: %s", app.state.cache.backend)

    yield  # Application runs here

    logger.info("Shutting down...")


tags_metadata = [
    {
        "name": "recurring-patterns",
        "description": "Recurrence rules that generate tasks, deadlines, exams and calendar events.",
    },
    {
        "name": "items",
        "description": "Generated and standalone items; completing one credits XP.",
    },
    {
        "name": "gamification",
        "description": "XP, levels, streaks, vacation mode, achievements and daily challenges.",
    },
    {
        "name": "leaderboard",
        "description": "Monthly XP totals per college.",
    },
    {
        "name": "cron",
        "description": "Scheduler-triggered jobs, protected by CRON_SECRET.",
    },
]

app = FastAPI(
    title="College Orbit API",
    description="""
## College Orbit

Recurring coursework and study gamification for college students.

### Features
- **Recurring Patterns** - Daily, weekly, biweekly, monthly and custom schedules
- **XP & Levels** - 10 XP per completed item, credited once per item
- **Streaks** - Consecutive active days, with vacation mode to pause
- **Daily Challenges** - Three rotating goals per day plus a sweep bonus
- **College Leaderboard** - Monthly XP summed per college
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=tags_metadata,
)

# One cache per process, handed to routes through app.state
app.state.cache = HybridCache(
    maxsize=1000,
    default_ttl=config.LEADERBOARD_CACHE_TTL_SECONDS,
    redis_url=config.REDIS_URL,
)

# SECURITY: Explicitly list allowed origins - no wildcards
ALLOWED_ORIGINS = [
    "http://localhost:3000",  # Next.js dev server
    "http://localhost:3001",
]

# Allow additional origins from environment (for preview deploys)
if config.CORS_ALLOWED_ORIGINS:
    ALLOWED_ORIGINS.extend([o.strip() for o in config.CORS_ALLOWED_ORIGINS.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "Accept"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    # Details stay in the logs (and Sentry); clients get a generic message
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Include routers
app.include_router(recurring_patterns.router)  # Recurrence rules
app.include_router(items.router)  # Tasks, deadlines, exams, events
app.include_router(gamification.router)  # XP, streaks, challenges
app.include_router(leaderboard.router)  # College leaderboard
app.include_router(cron.router)  # Scheduled jobs


@app.get("/")
def root():
    return {
        "message": "College Orbit API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
