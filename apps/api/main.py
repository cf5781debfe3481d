"""
Survey Points API - FastAPI Backend
Main application entry point wiring the points ledger and AI services.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base, async_session_maker
import models  # noqa: F401
from llm.manager import build_orchestrator
from routers import ai, health, points
from services.point_rules import seed_default_point_rules


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Survey Points API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if settings.SEED_POINT_RULES:
        try:
            async with async_session_maker() as session:
                created = await seed_default_point_rules(session)
            if created:
                print(f"🎯 Seeded {created} default point rules.")
        except Exception as exc:
            print(f"⚠️ Point rule seeding skipped: {exc}")

    app.state.llm = build_orchestrator(settings)
    providers = app.state.llm.available_providers()
    if providers:
        print(f"🤖 LLM providers (in priority order): {', '.join(providers)}")
    else:
        print("⚠️ No LLM provider API keys configured; AI endpoints will return 503.")
    yield
    # Shutdown
    await app.state.llm.aclose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Survey Points API",
    description="Survey reward points ledger and AI-assisted survey design",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(points.router, prefix="/points", tags=["Points"])
app.include_router(ai.router, prefix="/ai", tags=["AI"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Survey Points API",
        "version": "0.1.0",
        "status": "running"
    }
