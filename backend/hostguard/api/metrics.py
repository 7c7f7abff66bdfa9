"""Metric query API endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from hostguard.setup import get_engine


class MetricSampleResponse(BaseModel):
    value: float | None
    timestamp: datetime
    status: str
    error: str | None = None


class MetricSeriesResponse(BaseModel):
    """Response model for a metric range query."""

    source: str
    key: str
    window_seconds: float
    samples: list[MetricSampleResponse]
    count: int


class MetricSummaryResponse(BaseModel):
    source: str
    key: str
    window_seconds: float
    count: int
    unknown_count: int
    min: float | None
    max: float | None
    avg: float | None
    latest: float | None


class SeriesListResponse(BaseModel):
    series: list[dict[str, str]]


router = APIRouter(prefix="/api/metrics", tags=["metrics"])


@router.get("", response_model=SeriesListResponse)
async def list_series() -> SeriesListResponse:
    """List the (source, key) pairs that have recorded samples."""
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    return SeriesListResponse(
        series=[{"source": s, "key": k} for s, k in engine.metric_store.series_keys()]
    )


@router.get("/{source}/{key}", response_model=MetricSeriesResponse)
async def query_metric(
    source: str,
    key: str,
    window_seconds: float = Query(default=3600, gt=0),
) -> MetricSeriesResponse:
    """Get samples of one series within a window, oldest first.

    An unknown series returns an empty sample list.
    """
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    samples = engine.metric_store.query(source, key, window_seconds)
    return MetricSeriesResponse(
        source=source,
        key=key,
        window_seconds=window_seconds,
        samples=[
            MetricSampleResponse(
                value=s.value, timestamp=s.timestamp, status=s.status.value, error=s.error
            )
            for s in samples
        ],
        count=len(samples),
    )


@router.get("/{source}/{key}/summary", response_model=MetricSummaryResponse)
async def summarize_metric(
    source: str,
    key: str,
    window_seconds: float = Query(default=3600, gt=0),
) -> MetricSummaryResponse:
    engine = get_engine()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    summary = engine.metric_store.summarize(source, key, window_seconds)
    return MetricSummaryResponse(window_seconds=window_seconds, **summary.to_dict())
