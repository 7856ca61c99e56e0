"""
FastAPI Monitor Server for a running crawl

Provides API endpoints for:
- Health of the crawl
- Run statistics
- Quota counters
- Work queue size
- Decoding a pb parameter (debugging review/search request URLs)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import API_HOST, API_PORT
from .decoder.pb import PbTree
from .logging_config import get_logger

logger = get_logger(__name__)


# Response Models
class HealthResponse(BaseModel):
    status: str
    running: bool
    started_at: Optional[str] = None


class StatsResponse(BaseModel):
    ok: int
    failed: int
    maps: int
    places: int
    out_of_polygon: int
    quota_rejected: int
    duplicates: int
    title_mismatch: int


class QuotaResponse(BaseModel):
    global_ceiling: int
    per_query_ceiling: int
    global_enqueued: int
    global_scraped: int
    per_query_enqueued: Dict[str, int]
    per_query_scraped: Dict[str, int]


class QueueResponse(BaseModel):
    pending: int
    handled: int


# Request Models
class PbInput(BaseModel):
    pb: str


class PbDecodeResponse(BaseModel):
    fields: List[Dict[str, Any]]
    encoded: str


def create_app(crawler=None) -> FastAPI:
    """
    Build the monitor app for a crawler.

    Args:
        crawler: The running Crawler, None serves only health and pb decoding
    """
    app = FastAPI(title="Google Maps Crawler Monitor API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_crawler():
        if crawler is None:
            raise HTTPException(status_code=503, detail="No crawl attached")
        return crawler

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        if crawler is None:
            return HealthResponse(status="ok", running=False)
        started_at = crawler.started_at
        return HealthResponse(
            status="ok",
            running=crawler.is_running,
            started_at=started_at.astimezone(timezone.utc).isoformat() if isinstance(started_at, datetime) else None,
        )

    @app.get("/api/stats", response_model=StatsResponse)
    async def get_stats():
        return StatsResponse(**require_crawler().stats.to_dict())

    @app.get("/api/quota", response_model=QuotaResponse)
    async def get_quota():
        return QuotaResponse(**require_crawler().quota.to_dict())

    @app.get("/api/queue", response_model=QueueResponse)
    async def get_queue():
        queue = require_crawler().queue
        return QueueResponse(pending=len(queue), handled=getattr(queue, 'handled_count', 0))

    @app.post("/api/decode-pb", response_model=PbDecodeResponse)
    async def decode_pb(input: PbInput):
        """Decode a pb parameter into its field tree"""
        try:
            tree = PbTree.decode(input.pb)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return PbDecodeResponse(fields=tree.to_dict(), encoded=tree.encode())

    return app


def run_server(host: str = API_HOST, port: int = API_PORT):
    """Serve a standalone monitor (pb decoding only)"""
    import uvicorn
    uvicorn.run(create_app(), host=host, port=port)
