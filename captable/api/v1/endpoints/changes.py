"""
Change stream endpoint.

- GET /changes/stream  — Server-sent events for committed writes

Usage:
    const es = new EventSource('/api/v1/changes/stream?tables=subscriptions');
    es.addEventListener('change', e => refetch(JSON.parse(e.data)));
"""

from typing import List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from captable.api.v1.responses import sse_response
from captable.core.events import change_feed

router = APIRouter()


@router.get(
    "/stream",
    response_class=StreamingResponse,
    summary="Stream change events",
    description=(
        "Each committed write is sent as an ``event: change`` with the table, "
        "action (insert / update / delete) and row key.  Restrict with "
        "``tables``.  Keepalive comments are sent during quiet periods."
    ),
)
async def stream_changes(
    tables: Optional[List[str]] = Query(None, description="Tables to watch (all when omitted)"),
) -> StreamingResponse:
    return sse_response(change_feed.stream(tables))
