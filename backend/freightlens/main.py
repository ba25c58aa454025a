"""FreightLens - Logistics Investigation API"""
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError as RequestBodyError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from freightlens.core.config import get_settings
from freightlens.core.logging import configure_logging, logger
from freightlens.routers import investigate, schema, shipments
from freightlens.services.reasoning_client import reasoning_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "FreightLens API starting",
        version="0.1.0",
        reasoning_model=settings.reasoning_model,
        reasoning_configured=reasoning_client.is_configured(),
        shipments_db=settings.shipments_db_path,
    )
    yield
    # Shutdown
    logger.info("FreightLens API shutting down")


app = FastAPI(
    title="FreightLens API",
    description="Ask free-text questions about shipment data and get answers, reasoning, and charts",
    version="0.1.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Malformed investigate payloads still get the fallback response body
app.add_exception_handler(RequestBodyError, investigate.invalid_request_handler)

# Include routers
app.include_router(investigate.router)
app.include_router(schema.router)
app.include_router(shipments.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "FreightLens API",
        "version": "0.1.0",
        "description": "Logistics data investigator",
        "endpoints": {
            "investigate": "/investigate",
            "schema": "/schema",
            "shipments": "/shipments",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "reasoning_configured": reasoning_client.is_configured()}
