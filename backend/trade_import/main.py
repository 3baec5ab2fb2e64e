"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trade_import import models  # noqa: F401  (registers tables on Base.metadata)
from trade_import.config import settings
from trade_import.database import Base, engine
from trade_import.services.brokers import BrokerAdapterRegistry
from trade_import.services.progress_tracker import ProgressTrackerRegistry

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
    yield


# Create FastAPI app
app = FastAPI(
    title="Trade Import API",
    description="Options trade CSV import service",
    version="0.1.0",
    debug=settings.debug,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Import sessions and adapters shared by all requests
app.state.trackers = ProgressTrackerRegistry(
    max_finished=settings.finished_sessions_retained
)
app.state.broker_registry = BrokerAdapterRegistry()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Trade Import API", "version": "0.1.0", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers
from trade_import.routers import imports, portfolios  # noqa: E402

app.include_router(imports.router)
app.include_router(portfolios.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, reload=True)
