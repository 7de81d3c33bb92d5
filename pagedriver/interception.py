"""Request interception through the ``Fetch`` domain.

While an interceptor is set, every request pauses in the browser and is
handed to it as an ``InterceptedRequest``. The request proceeds only once
one of ``continue_``, ``abort`` or ``fulfill`` is called; if none is, it
stays paused.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping

from pagedriver.bridge import as_outcome
from pagedriver.errors import InterceptionError, ProtocolDisconnect, ProtocolError

if TYPE_CHECKING:
    from pagedriver.connection import Connection

logger = logging.getLogger(__name__)

ERROR_REASONS = frozenset(
    {
        "Failed",
        "Aborted",
        "TimedOut",
        "AccessDenied",
        "ConnectionClosed",
        "ConnectionReset",
        "ConnectionRefused",
        "ConnectionAborted",
        "ConnectionFailed",
        "NameNotResolved",
        "InternetDisconnected",
        "AddressUnreachable",
        "BlockedByClient",
        "BlockedByResponse",
    }
)

Interceptor = Callable[["InterceptedRequest"], Any]


def _encode_body(body: str | bytes) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    return base64.b64encode(body).decode("ascii")


def _header_entries(headers: Mapping[str, str]) -> list[dict]:
    return [{"name": name, "value": str(value)} for name, value in headers.items()]


class InterceptedRequest:
    """A paused request awaiting exactly one disposition."""

    def __init__(self, gate: InterceptionGate, params: dict):
        request = params.get("request", {})
        self._gate = gate
        self.request_id: str = params["requestId"]
        self.network_id: str | None = params.get("networkId")
        self.frame_id: str | None = params.get("frameId")
        self.resource_type: str = params.get("resourceType", "")
        self._url: str = request.get("url", "") + request.get("urlFragment", "")
        self._method: str = request.get("method", "GET")
        self._headers: dict[str, str] = dict(request.get("headers", {}))
        self._post_data: str | None = request.get("postData")
        self._handled = False

    def __repr__(self) -> str:
        return f"<InterceptedRequest {self._method} {self._url}>"

    @property
    def url(self) -> str:
        return self._url

    @property
    def method(self) -> str:
        return self._method

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    @property
    def post_data(self) -> str | None:
        return self._post_data

    @property
    def handled(self) -> bool:
        return self._handled

    # ── Dispositions ────────────────────────────────────────────

    def continue_(
        self,
        *,
        url: str | None = None,
        method: str | None = None,
        headers: Mapping[str, str] | None = None,
        post_data: str | bytes | None = None,
    ) -> asyncio.Task:
        """Let the request proceed, optionally rewritten."""
        params: dict = {"requestId": self.request_id}
        if url is not None:
            params["url"] = url
        if method is not None:
            params["method"] = method
        if headers is not None:
            params["headers"] = _header_entries(headers)
        if post_data is not None:
            params["postData"] = _encode_body(post_data)
        return self._dispose("Fetch.continueRequest", params)

    def abort(self, error_reason: str = "Failed") -> asyncio.Task:
        """Fail the request; the page sees a resource-load failure."""
        if error_reason not in ERROR_REASONS:
            raise ValueError(f"Unknown error reason: {error_reason}")
        task = self._dispose(
            "Fetch.failRequest", {"requestId": self.request_id, "errorReason": error_reason}
        )
        self._gate._aborted.add(self.network_id or self.request_id)
        return task

    def fulfill(
        self,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
        body: str | bytes = b"",
        content_type: str | None = None,
    ) -> asyncio.Task:
        """Answer the request without touching the network."""
        response_headers = dict(headers or {})
        if content_type is not None:
            response_headers["Content-Type"] = content_type
        return self._dispose(
            "Fetch.fulfillRequest",
            {
                "requestId": self.request_id,
                "responseCode": status,
                "responseHeaders": _header_entries(response_headers),
                "body": _encode_body(body),
            },
        )

    def _dispose(self, method: str, params: dict) -> asyncio.Task:
        if self._handled:
            raise InterceptionError(f"Request is already handled: {self._url}", method=method)
        self._handled = True
        self._gate._paused.pop(self.request_id, None)
        return self._gate._connection.spawn(self._gate._send_disposition(method, params))


class InterceptionGate:
    """Routes paused requests to the interceptor active when they paused."""

    def __init__(self, connection: Connection):
        self._connection = connection
        self._interceptor: Interceptor | None = None
        self._enabled = False
        self._paused: dict[str, InterceptedRequest] = {}
        self._aborted: set[str] = set()
        connection.on("Fetch.requestPaused", self._on_request_paused)

    @property
    def interceptor(self) -> Interceptor | None:
        return self._interceptor

    @property
    def paused_requests(self) -> list[InterceptedRequest]:
        return list(self._paused.values())

    async def set_interceptor(self, interceptor: Interceptor | None) -> None:
        self._interceptor = interceptor
        if interceptor is not None:
            if not self._enabled:
                self._enabled = True
                await self._connection.send(
                    "Fetch.enable", {"patterns": [{"urlPattern": "*"}]}
                )
        else:
            await self._maybe_disable()

    def consume_abort(self, request_id: str) -> bool:
        """Whether ``request_id`` failed because an interceptor aborted it."""
        if request_id in self._aborted:
            self._aborted.discard(request_id)
            return True
        return False

    def retain_aborts(self, request_ids) -> None:
        """Forget abort tags for requests not in ``request_ids``."""
        self._aborted.intersection_update(request_ids)

    def _on_request_paused(self, params: dict) -> None:
        request = InterceptedRequest(self, params)
        interceptor = self._interceptor
        if interceptor is None:
            # Paused after the interceptor was cleared but before Fetch.disable.
            request.continue_()
            return
        self._paused[request.request_id] = request
        try:
            outcome = as_outcome(interceptor(request))
        except Exception:
            logger.exception("Request interceptor failed for %s", request.url)
            return
        self._connection.spawn(self._await_interceptor(request, outcome))

    async def _await_interceptor(self, request: InterceptedRequest, outcome) -> None:
        try:
            await outcome.resolve()
        except Exception:
            logger.exception("Request interceptor failed for %s", request.url)

    async def _send_disposition(self, method: str, params: dict) -> None:
        try:
            await self._connection.send(method, params)
        except ProtocolError as e:
            # Typically the request was cancelled by a navigation meanwhile.
            logger.warning("%s for request %s failed: %s", method, params["requestId"], e)
        except ProtocolDisconnect:
            return
        await self._maybe_disable()

    async def _maybe_disable(self) -> None:
        if self._interceptor is None and self._enabled and not self._paused:
            self._enabled = False
            await self._connection.send("Fetch.disable")
