"""Joyent Manta gateway over the Manta HTTP API."""

from __future__ import annotations

import json
import mimetypes
import posixpath
from typing import IO, AsyncIterator, Optional
from urllib.parse import quote

import httpx

from mantabox.core.errors import BackendError, NotFoundError, TransientBackendError
from mantabox.core.logging import get_logger
from mantabox.core.retry import RetryConfig, run_with_backoff
from mantabox.storage.gateway import BackendGateway, Descriptor, DescriptorType, Tenant
from mantabox.storage.signer import RequestSigner
from mantabox.storage.streams import HttpObjectReader, ObjectReader, ObjectWriter, SpooledObjectWriter, iter_spool

DIRECTORY_CONTENT_TYPE = "application/json; type=directory"
LINK_CONTENT_TYPE = "application/json; type=link"
LISTING_ACCEPT = "application/x-json-stream"
NOT_FOUND_CODES = {
    "ResourceNotFound",
    "DirectoryDoesNotExist",
    "SourceObjectNotFound",
    "NotFound",
}
DEFAULT_PAGE_SIZE = 1000

logger = get_logger("manta-gateway")


def _is_directory(response: httpx.Response) -> bool:
    return "type=directory" in response.headers.get("content-type", "")


class MantaGateway(BackendGateway):
    """Gateway for Manta (https://apidocs.joyent.com/manta/)."""

    provider = "manta"

    def __init__(
        self,
        url: str,
        signer: RequestSigner,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """
        Initialize Manta gateway.

        Args:
            url: Manta endpoint (e.g., "https://us-east.manta.joyent.com")
            signer: Signs each request with the account key
            timeout: Per-request timeout in seconds
            retry_config: Backoff for idempotent requests
            http_client: Optional client for dependency injection (testing)
            page_size: Entries requested per listing page
        """
        self.url = url
        self.signer = signer
        self.account = signer.user.split("/")[0]
        self.page_size = page_size
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=url, timeout=timeout)
        self._retry = retry_config or RetryConfig(retryable_exceptions=(TransientBackendError,))

    def __repr__(self) -> str:
        return f"MantaGateway(url={self.url!r}, user={self.signer.user!r})"

    def expand(self, path: str) -> str:
        """Expand ``~~`` to the account root and make the path absolute."""
        if path.startswith("~~"):
            path = f"/{self.account}{path[2:]}"
        path = posixpath.normpath("/" + path.lstrip("/"))
        return path

    def _error_from_response(self, response: httpx.Response, path: str) -> BackendError:
        code = None
        message = response.reason_phrase
        try:
            body = response.json()
            code = body.get("code")
            message = body.get("message", message)
        except ValueError:
            pass

        if response.status_code == 404 or code in NOT_FOUND_CODES:
            error_class = NotFoundError
        elif response.status_code >= 500 or response.status_code == 429:
            error_class = TransientBackendError
        else:
            error_class = BackendError
        return error_class(
            f"Manta {code or response.status_code}: {message}",
            code=code,
            status_code=response.status_code,
            path=path,
        )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[dict] = None,
        stream: bool = False,
        **kwargs,
    ) -> httpx.Response:
        request_headers = self.signer.headers()
        if headers:
            request_headers.update(headers)
        request = self._client.build_request(
            method, quote(path), headers=request_headers, **kwargs
        )
        logger.debug(f"[MantaGateway] {method} {path}")
        try:
            response = await self._client.send(request, stream=stream)
        except httpx.TransportError as exc:
            raise TransientBackendError(
                f"Manta transport failure: {exc}", code="TransportError", path=path
            ) from exc

        if response.status_code >= 400:
            if stream:
                await response.aread()
                await response.aclose()
            raise self._error_from_response(response, path)
        return response

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send an idempotent request, retrying transient failures."""
        return await run_with_backoff(self._send, self._retry, method, path, **kwargs)

    async def ensure_path_recursive(self, path: str) -> None:
        parts = [part for part in self.expand(path).split("/") if part]
        # /<account>/<top-level dir> always exists and cannot be created
        for depth in range(3, len(parts) + 1):
            directory = "/" + "/".join(parts[:depth])
            await self._request(
                "PUT", directory, headers={"Content-Type": DIRECTORY_CONTENT_TYPE}
            )

    async def list(self, path: str) -> AsyncIterator[Descriptor]:
        full_path = self.expand(path)
        marker: Optional[str] = None
        while True:
            params = {"limit": str(self.page_size)}
            if marker is not None:
                params["marker"] = marker
            response = await self._request(
                "GET",
                full_path,
                params=params,
                headers={"Accept": LISTING_ACCEPT},
                stream=True,
            )
            count = 0
            last_name = None
            try:
                if not _is_directory(response):
                    raise BackendError(
                        f"Not a directory: {full_path}", code="NotADirectory", path=full_path
                    )
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        record = json.loads(line)
                        last_name = record["name"]
                    except (ValueError, TypeError, KeyError) as exc:
                        raise BackendError(
                            f"Manta returned an unreadable listing entry: {line[:200]!r}",
                            code="InvalidResponse",
                            status_code=response.status_code,
                            path=full_path,
                        ) from exc
                    count += 1
                    # Pages after the first repeat the marker entry
                    if record["name"] == marker:
                        continue
                    yield self._descriptor(record, full_path)
            except httpx.TransportError as exc:
                raise TransientBackendError(
                    f"Manta listing interrupted: {exc}", code="TransportError", path=full_path
                ) from exc
            finally:
                await response.aclose()

            if count < self.page_size or last_name is None:
                return
            marker = last_name

    @staticmethod
    def _descriptor(record: dict, parent: str) -> Descriptor:
        kind = DescriptorType.OBJECT if record.get("type") == "object" else DescriptorType.DIRECTORY
        return Descriptor(
            name=record["name"],
            type=kind,
            size=int(record.get("size") or 0),
            etag=record.get("etag"),
            mtime=record.get("mtime"),
            parent=parent,
        )

    async def open_read(self, path: str) -> ObjectReader:
        full_path = self.expand(path)
        response = await self._request("GET", full_path, stream=True)
        if _is_directory(response):
            await response.aclose()
            raise BackendError(
                f"Not an object: {full_path}", code="NotAnObject", path=full_path
            )
        return HttpObjectReader(response)

    async def open_write(self, path: str) -> ObjectWriter:
        full_path = self.expand(path)
        content_type = mimetypes.guess_type(full_path)[0] or "application/octet-stream"

        async def put(spool: IO[bytes], size: int) -> None:
            spool.seek(0)
            response = await self._send(
                "PUT",
                full_path,
                headers={"Content-Type": content_type, "Content-Length": str(size)},
                content=iter_spool(spool),
            )
            logger.debug(f"[MantaGateway] stored {size} bytes at {full_path} ({response.status_code})")

        async def commit(spool: IO[bytes], size: int) -> None:
            await run_with_backoff(put, self._retry, spool, size)

        return SpooledObjectWriter(commit)

    async def link(self, source: str, dest: str) -> None:
        await self._request(
            "PUT",
            self.expand(dest),
            headers={"Content-Type": LINK_CONTENT_TYPE, "Location": self.expand(source)},
        )

    async def unlink(self, path: str) -> None:
        await self._send("DELETE", self.expand(path))

    async def stat(self, path: str) -> Descriptor:
        full_path = self.expand(path)
        response = await self._request("HEAD", full_path)
        if _is_directory(response):
            kind = DescriptorType.DIRECTORY
            size = 0
        else:
            kind = DescriptorType.OBJECT
            size = int(response.headers.get("content-length") or 0)
        return Descriptor(
            name=posixpath.basename(full_path),
            type=kind,
            size=size,
            etag=response.headers.get("etag"),
            mtime=response.headers.get("last-modified"),
            parent=posixpath.dirname(full_path),
        )

    async def create_multipart_upload(self, path: str, tenant: Tenant) -> str:
        body = {
            "objectPath": self.expand(path),
            "headers": {
                "m-account-id": tenant.account_id,
                "m-app-id": tenant.app_id,
            },
        }
        response = await self._send("POST", f"/{self.account}/uploads", json=body)
        try:
            return response.json()["id"]
        except (ValueError, KeyError) as exc:
            raise BackendError(
                "Manta createUpload returned no upload id",
                code="InvalidResponse",
                status_code=response.status_code,
                path=path,
            ) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
