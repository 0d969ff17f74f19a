"""
Server-sent events framing.

Vendors stream completions as ``data:`` lines. Network reads split those
lines at arbitrary byte offsets, so the buffer holds back any trailing
partial line until its newline arrives.
"""

from typing import AsyncIterator, List, Optional

import httpx

DONE_SENTINEL = "[DONE]"


class SSELineBuffer:
    """Accumulates decoded text and releases complete ``data:`` payloads."""

    def __init__(self):
        self._pending = ""

    def feed(self, text: str) -> List[str]:
        """Add text and return the payloads of every line it completed."""
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        return [data for data in map(_parse_line, lines) if data is not None]

    def flush(self) -> List[str]:
        """Drain a final line the stream ended without terminating."""
        line, self._pending = self._pending, ""
        data = _parse_line(line)
        return [data] if data is not None else []


def _parse_line(line: str) -> Optional[str]:
    line = line.rstrip("\r")
    # comments (":"), event/id fields and blank separators carry no payload
    if not line.startswith("data:"):
        return None
    data = line[5:]
    if data.startswith(" "):
        data = data[1:]
    if not data.strip() or data.strip() == DONE_SENTINEL:
        return None
    return data


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield each complete ``data:`` payload from a streaming response."""
    buffer = SSELineBuffer()
    async for text in response.aiter_text():
        for data in buffer.feed(text):
            yield data
    for data in buffer.flush():
        yield data
