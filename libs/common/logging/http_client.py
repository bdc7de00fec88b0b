"""httpx client that forwards the current trace ID.

The upstream signal client and the notifier both use this so that a
scheduler cycle's trace ID shows up in the generator's and the chat
gateway's request logs.
"""

from typing import Any

import httpx

from libs.common.logging.context import TRACE_ID_HEADER, get_trace_id


class TracedHTTPXClient(httpx.AsyncClient):
    """``httpx.AsyncClient`` adding ``X-Trace-ID`` to every outgoing request."""

    async def request(
        self,
        method: str,
        url: httpx.URL | str,
        **kwargs: Any,
    ) -> httpx.Response:
        trace_id = get_trace_id()
        if trace_id:
            headers = dict(kwargs.get("headers") or {})
            headers[TRACE_ID_HEADER] = trace_id
            kwargs["headers"] = headers

        return await super().request(method, url, **kwargs)


def get_traced_client(
    base_url: str | None = None,
    timeout: float = 10.0,
    **kwargs: Any,
) -> TracedHTTPXClient:
    """Build a :class:`TracedHTTPXClient`.

    Args:
        base_url: Optional base URL for relative request paths
        timeout: Per-request timeout in seconds
        **kwargs: Passed through to ``httpx.AsyncClient``
    """
    client_kwargs: dict[str, Any] = {"timeout": timeout, **kwargs}
    if base_url is not None:
        client_kwargs["base_url"] = base_url

    return TracedHTTPXClient(**client_kwargs)
