#!/usr/bin/env python3
"""
Sentiment Pipeline Service

Serves the collection, processing and aggregation operations over HTTP.
Provides health check endpoints and metrics collection.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response
import uvicorn
import structlog

from services.api.service import PipelineService
from shared.config import create_pipeline_settings
from shared.logging_config import configure_logging

logger = structlog.get_logger(__name__)

# Global service instance, created on first use
pipeline_service: Optional[PipelineService] = None


def get_service() -> PipelineService:
    global pipeline_service

    if pipeline_service is None:
        pipeline_service = PipelineService(create_pipeline_settings())
        logger.info("Pipeline service initialized",
                    kv_backend=pipeline_service.settings.kv_backend)
    return pipeline_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    global pipeline_service
    if pipeline_service is not None:
        try:
            await pipeline_service.close()
            logger.info("Pipeline service closed")
        except Exception as e:
            logger.error("Error closing pipeline service", error=str(e))


app = FastAPI(title="AI Sentiment Pipeline", version="1.0.0", lifespan=lifespan)


@app.exception_handler(ValueError)
async def invalid_parameters(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": str(exc) or "Unknown error"})


@app.get("/health")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint for Docker health checks."""
    return await get_service().health()


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/collect")
async def collect() -> Dict[str, Any]:
    """Run a collection over the configured range and return its result."""
    return await get_service().start_collection()


@app.post("/cancel-collection")
async def cancel_collection(run_id: Optional[str] = None) -> Dict[str, str]:
    return await get_service().cancel_collection(run_id)


@app.get("/collection-status")
async def collection_status() -> Dict[str, Any]:
    return get_service().collection_status()


@app.post("/process")
async def process() -> Dict[str, Any]:
    """Enrich every pending tweet."""
    return await get_service().process()


@app.get("/sentiment")
async def sentiment(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    metric: str = "sentiment",
) -> List[Dict[str, Any]]:
    """Per-day sentiment statistics for startDate..endDate inclusive."""
    return await get_service().sentiment(start_date, end_date, metric)


@app.get("/tweets")
async def tweets(
    date: Optional[str] = None,
    sentiment: Optional[str] = None,
    metric: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Tweets of one day filtered by label, or by an aspect's sentiment."""
    if not date or not sentiment:
        raise ValueError("Missing required parameters: date and sentiment")
    return await get_service().tweets(date, sentiment, metric)


@app.get("/daily")
async def daily() -> Dict[str, Any]:
    return await get_service().daily()


@app.get("/weekly")
async def weekly() -> Dict[str, Any]:
    return await get_service().weekly()


async def main() -> None:
    """Main application entry point."""
    log_level = os.getenv("LOG_LEVEL", "INFO")
    port = int(os.getenv("PORT", "8000"))
    configure_logging(log_level)

    logger.info("Starting sentiment pipeline service...", port=port)
    get_service()

    config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level=log_level.lower()
    )
    server = uvicorn.Server(config)
    await server.serve()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
