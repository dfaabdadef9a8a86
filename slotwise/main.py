# slotwise/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slotwise.core.config import API_HOST, API_PORT, APP_ENV, LOG_LEVEL
from slotwise.core.database import init_models

#Import Routers
from slotwise.api.v1 import bookings
from slotwise.api.v1 import slots

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info(f"Slotwise API started (env={APP_ENV})")
    yield


# Create FastAPI app
app = FastAPI(
    title="Slotwise Scheduling API",
    description="Availability and booking engine for hosts and teams",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
#Include routers
app.include_router(slots.router, prefix="/api/v1")
app.include_router(bookings.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Slotwise Scheduling API",
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "environment": APP_ENV
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "slotwise.main:app",
        host=API_HOST,
        port=API_PORT,
        reload=True
    )
