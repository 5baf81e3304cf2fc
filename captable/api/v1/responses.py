"""
Non-JSON responses shared by the endpoints: CSV downloads and the SSE
change stream.
"""

from typing import AsyncIterator

from fastapi.responses import StreamingResponse


def csv_response(content: str, filename: str) -> StreamingResponse:
    """Serve ``content`` as a CSV attachment."""
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def sse_response(events: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )
