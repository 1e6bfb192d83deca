"""HTTP surface: timeline pagination, health and metrics."""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .metrics import feed_requests_total
from .repository import TwitRepository, normalize_limit
from .types import FeedItem

FEED_CACHE_CONTROL = "private, max-age=2"


def serialize_item(item: FeedItem) -> Dict[str, Any]:
    """Map a stored item to the feed wire shape."""
    record: Dict[str, Any] = {"createdAt": item.record_created_at}
    payload: Dict[str, Any] = {
        "type": item.type.value,
        "uri": item.uri,
        "cid": item.cid,
        "indexedAt": item.indexed_at,
        "record": record,
        "author": {"did": item.author_did, "handle": item.author_handle},
    }

    if item.is_retwit:
        if item.subject_uri:
            record["subject"] = {"uri": item.subject_uri, "cid": item.subject_cid}
        if item.subject_record_created_at:
            record["subjectCreatedAt"] = item.subject_record_created_at
        payload["resharedBy"] = {
            "did": item.reshared_by_did,
            "handle": item.reshared_by_handle,
        }

    return payload


def create_app(
    repository: TwitRepository,
    consumer=None,
    metrics_enabled: bool = True,
    service_name: str = "atweet-feed",
) -> FastAPI:
    app = FastAPI(
        title="atweet feed",
        description="Timeline cache fed by the Jetstream firehose",
        version="1.0.0",
    )

    @app.get("/api/feed")
    def get_feed(
        limit: Optional[str] = Query(default=None),
        cursor: Optional[str] = Query(default=None),
    ):
        """Newest-first page of the timeline; follow ``cursor`` until it is null."""
        feed_requests_total.inc()
        result = repository.list(cursor=cursor, limit=normalize_limit(limit))
        return JSONResponse(
            content={
                "cursor": result.next_cursor,
                "items": [serialize_item(item) for item in result.items],
            },
            headers={"Cache-Control": FEED_CACHE_CONTROL},
        )

    @app.get("/health")
    def health_check():
        """Basic health check endpoint."""
        jetstream_state = consumer.state.value if consumer is not None else "disabled"
        cursor = consumer.cursor_store.latest if consumer is not None else None
        return JSONResponse(
            content={
                "status": "healthy",
                "service": service_name,
                "jetstream": jetstream_state,
                "cursor": cursor,
            }
        )

    if metrics_enabled:

        @app.get("/metrics")
        def metrics():
            """Prometheus metrics endpoint."""
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
