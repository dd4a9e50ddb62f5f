"""Async client for the BlueBubbles server REST API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable
from urllib.parse import quote

import httpx

from bluebubbles_client.api.auth import AuthState
from bluebubbles_client.config import DEFAULT_REQUEST_TIMEOUT
from bluebubbles_client.exceptions import ApiError
from bluebubbles_client.models import ServerMetadata

logger = logging.getLogger(__name__)

API_ROOT = "/api/v1"

THUMBNAIL_WIDTH = 512
THUMBNAIL_FALLBACK_QUALITY = 70
UPLOAD_CHUNK_SIZE = 64 * 1024

MESSAGE_EXPANSIONS = [
    "attachments",
    "message.attributedbody",
    "message.messageSummaryInfo",
    "message.payloadData",
]


def _unwrap(payload):
    """Return the ``data`` member of a response envelope, if there is one."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _download_params(
    width: int | None = None,
    height: int | None = None,
    quality: int | str | None = None,
) -> dict:
    params: dict = {}
    if width is not None:
        params["width"] = str(max(1, int(width)))
    if height is not None:
        params["height"] = str(max(1, int(height)))
    if quality is not None:
        if isinstance(quality, str):
            params["quality"] = quality
        else:
            params["quality"] = str(min(100, max(1, int(quality))))
    return params


class AttachmentDownload:
    """A streamed attachment body. Only valid inside its ``async with`` block."""

    def __init__(self, response: httpx.Response):
        self._response = response
        self.content_type: str | None = response.headers.get("content-type")
        try:
            self.content_length = int(response.headers.get("content-length", "0"))
        except ValueError:
            self.content_length = 0

    async def chunks(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes():
            if chunk:
                yield chunk

    async def read(self) -> bytes:
        return await self._response.aread()


class BlueBubblesAPI:
    """Thin request/response wrapper around the BlueBubbles REST surface.

    Every failure surfaces as ``ApiError``; nothing is retried here.

    Args:
        auth: Server URL and credentials.
        client: Optional pre-built ``httpx.AsyncClient`` (tests pass one with
            a ``MockTransport``). A client created here is closed by ``aclose``.
    """

    def __init__(
        self,
        auth: AuthState,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.auth = auth
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "BlueBubblesAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.auth.server_url}{API_ROOT}{path}"

    def _params(self, params: dict | None = None) -> dict:
        merged = dict(params or {})
        merged.update(self.auth.query_params())
        return merged

    async def _raise_api_error(self, response: httpx.Response) -> None:
        await response.aread()
        details = None
        try:
            details = response.json()
        except ValueError:
            pass
        if not isinstance(details, dict):
            details = None

        error_field = details.get("error") if details else None
        message = (
            (details.get("message") if details else None)
            or (error_field if isinstance(error_field, str) else None)
            or response.reason_phrase
            or f"Request failed with status {response.status_code}"
        )
        raise ApiError(message, status=response.status_code, details=details)

    async def request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
    ):
        """Send an authenticated request and return the decoded JSON body."""
        try:
            response = await self._client.request(
                method,
                self._url(path),
                json=json,
                params=self._params(params),
                headers=self.auth.headers,
            )
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            await self._raise_api_error(response)
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                f"Invalid JSON in response to {method} {path}",
                status=response.status_code,
            ) from e

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    async def fetch_server_metadata(self) -> ServerMetadata:
        """Server info merged with feature flags.

        Older servers lack ``/server/features``; a 404 or 501 there degrades
        to the info payload alone.
        """
        info = _unwrap(await self.request("GET", "/server/info")) or {}
        if not isinstance(info, dict):
            raise ApiError(f"Invalid /server/info payload: expected an object, got {type(info).__name__}")
        try:
            features = _unwrap(await self.request("GET", "/server/features"))
        except ApiError as e:
            if e.status not in (404, 501):
                raise
            logger.info(f"Server has no feature endpoint (HTTP {e.status}), using /server/info only")
            features = None
        if features is not None and not isinstance(features, dict):
            features = None
        return ServerMetadata.from_wire(info, features)

    async def ping(self) -> None:
        await self.request("GET", "/general/ping")

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def fetch_chats(self, limit: int | None = None) -> dict:
        body = {
            "with": ["participants", "lastmessage", "lastmessage.attachments"],
            "sort": "lastmessage",
            "limit": limit if limit is not None else 1000,
        }
        return await self.request("POST", "/chat/query", json=body)

    async def fetch_chat(self, guid: str) -> dict:
        params = {"with": ["participants", "lastmessage", "lastmessage.attachments"]}
        return await self.request("GET", f"/chat/{quote(guid, safe='')}", params=params)

    async def create_chat(self, body: dict) -> dict:
        return await self.request("POST", "/chat/new", json=body)

    async def fetch_chat_messages(
        self,
        guid: str,
        limit: int | None = None,
        before: int | None = None,
        after: int | None = None,
        sort: str | None = None,
    ) -> dict:
        params: dict = {"with": MESSAGE_EXPANSIONS}
        if limit is not None:
            params["limit"] = str(limit)
        if before is not None:
            params["before"] = str(before)
        if after is not None:
            params["after"] = str(after)
        if sort is not None:
            params["sort"] = sort
        return await self.request(
            "GET", f"/chat/{quote(guid, safe='')}/message", params=params
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def fetch_message(self, guid: str, include_metadata: bool = False) -> dict:
        expansions = ["attachments"]
        if include_metadata:
            expansions.append("attachment.metadata")
        return await self.request(
            "GET", f"/message/{quote(guid, safe='')}", params={"with": expansions}
        )

    async def query_messages(self, payload: dict) -> dict:
        return await self.request("POST", "/message/query", json=payload)

    async def send_text_message(self, payload: dict) -> dict:
        return await self.request("POST", "/message/text", json=payload)

    async def upload_attachment(
        self,
        fields: dict[str, str],
        filename: str,
        content: bytes,
        mime_type: str | None = None,
        on_progress: Callable[[int], None] | None = None,
    ) -> dict:
        """Send a file as a multipart upload and return the created message record.

        ``on_progress`` receives the cumulative number of body bytes sent.
        """
        url = self._url("/message/attachment")
        files = {"attachment": (filename, content, mime_type or "application/octet-stream")}
        multipart = self._client.build_request("POST", url, data=fields, files=files)
        body = multipart.read()

        async def _body_chunks():
            sent = 0
            for start in range(0, len(body), UPLOAD_CHUNK_SIZE):
                chunk = body[start:start + UPLOAD_CHUNK_SIZE]
                yield chunk
                sent += len(chunk)
                if on_progress is not None:
                    on_progress(sent)

        headers = {
            **self.auth.headers,
            "Content-Type": multipart.headers["Content-Type"],
            "Content-Length": str(len(body)),
        }
        request = self._client.build_request(
            "POST", url, params=self._params(), content=_body_chunks(), headers=headers
        )
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as e:
            raise ApiError(f"Upload of {filename} failed: {e}") from e

        if not response.is_success:
            await self._raise_api_error(response)
        try:
            record = _unwrap(response.json())
        except ValueError as e:
            raise ApiError("Invalid response from server", status=response.status_code) from e
        if not isinstance(record, dict):
            raise ApiError("Invalid response from server", status=response.status_code)
        return record

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def _open_download(self, guid: str, params: dict) -> httpx.Response:
        request = self._client.build_request(
            "GET",
            self._url(f"/attachment/{quote(guid, safe='')}/download"),
            params=self._params(params),
            headers=self.auth.headers,
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ApiError(f"Download of attachment {guid} failed: {e}") from e
        if not response.is_success:
            try:
                await self._raise_api_error(response)
            finally:
                await response.aclose()
        return response

    @asynccontextmanager
    async def download_attachment(
        self,
        guid: str,
        width: int | None = None,
        height: int | None = None,
        quality: int | str | None = None,
    ) -> AsyncIterator[AttachmentDownload]:
        """Stream an attachment body::

            async with api.download_attachment(guid) as download:
                async for chunk in download.chunks():
                    ...
        """
        response = await self._open_download(guid, _download_params(width, height, quality))
        try:
            yield AttachmentDownload(response)
        finally:
            await response.aclose()

    @asynccontextmanager
    async def download_attachment_thumbnail(
        self,
        guid: str,
        width: int = THUMBNAIL_WIDTH,
        height: int | None = None,
        quality: int | str = "best",
    ) -> AsyncIterator[AttachmentDownload]:
        """Stream a resized attachment.

        Servers that reject the "best" preset with a 400 are retried once
        at a fixed numeric quality.
        """
        try:
            response = await self._open_download(guid, _download_params(width, height, quality))
        except ApiError as e:
            if quality != "best" or e.status != 400:
                raise
            logger.debug(f"Thumbnail quality 'best' rejected for {guid}, retrying at {THUMBNAIL_FALLBACK_QUALITY}")
            response = await self._open_download(
                guid, _download_params(width, height, THUMBNAIL_FALLBACK_QUALITY)
            )
        try:
            yield AttachmentDownload(response)
        finally:
            await response.aclose()
