"""S3-compatible gateway using boto3 (AWS S3, Cloudflare R2, MinIO)."""

from __future__ import annotations

import asyncio
import posixpath
from typing import IO, AsyncIterator, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from mantabox.core.errors import BackendError, NotFoundError, TransientBackendError
from mantabox.core.logging import get_logger
from mantabox.storage.gateway import BackendGateway, Descriptor, DescriptorType, Tenant
from mantabox.storage.streams import FileObjectReader, ObjectReader, ObjectWriter, SpooledObjectWriter

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchUpload"}
TRANSIENT_CODES = {"500", "503", "InternalError", "ServiceUnavailable", "SlowDown", "RequestTimeout"}

logger = get_logger("s3-gateway")


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _translate(exc: Exception, path: str) -> BackendError:
    if isinstance(exc, ClientError):
        code = _error_code(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in NOT_FOUND_CODES:
            return NotFoundError(f"Not found in S3: {path}", code=code, status_code=status, path=path)
        if code in TRANSIENT_CODES:
            return TransientBackendError(f"S3 unavailable: {code}", code=code, status_code=status, path=path)
        return BackendError(f"S3 error {code}: {path}", code=code, status_code=status, path=path)
    if isinstance(exc, NoCredentialsError):
        return BackendError("S3 credentials not configured", code="NoCredentials", path=path)
    return TransientBackendError(f"S3 request failed: {exc}", code="TransportError", path=path)


class S3Gateway(BackendGateway):
    """Gateway for S3-compatible object stores.

    Directories are zero-byte marker objects whose keys end in ``/``.
    """

    provider = "s3"

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: Optional[str] = None,
        client=None,
    ):
        """
        Initialize S3 gateway.

        Args:
            bucket_name: Bucket holding every tenant's objects
            endpoint_url: Custom endpoint (R2, MinIO); None for AWS
            access_key_id: Access key; None to use the default credential chain
            secret_access_key: Secret key
            region: Region name
            client: Optional boto3 S3 client for dependency injection (testing)
        """
        self.bucket_name = bucket_name
        self.s3_client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )

    @staticmethod
    def _key(path: str) -> str:
        return path.strip("/")

    @classmethod
    def _marker(cls, path: str) -> str:
        return f"{cls._key(path)}/"

    async def _call(self, path: str, method: str, **params):
        operation = getattr(self.s3_client, method)
        try:
            return await asyncio.to_thread(operation, Bucket=self.bucket_name, **params)
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, path) from exc

    async def _exists(self, key: str) -> bool:
        try:
            await self._call(key, "head_object", Key=key)
            return True
        except NotFoundError:
            return False

    async def _has_children(self, path: str) -> bool:
        prefix = self._marker(path)
        response = await self._call(path, "list_objects_v2", Prefix=prefix, MaxKeys=2)
        keys = [item["Key"] for item in response.get("Contents", [])]
        return any(key != prefix for key in keys)

    async def ensure_path_recursive(self, path: str) -> None:
        parts = [part for part in self._key(path).split("/") if part]
        for depth in range(1, len(parts) + 1):
            marker = "/".join(parts[:depth]) + "/"
            await self._call(path, "put_object", Key=marker, Body=b"")

    async def list(self, path: str) -> AsyncIterator[Descriptor]:
        prefix = self._marker(path)
        seen_any = False
        token: Optional[str] = None
        while True:
            params = {"Prefix": prefix, "Delimiter": "/"}
            if token:
                params["ContinuationToken"] = token
            page = await self._call(path, "list_objects_v2", **params)

            for common in page.get("CommonPrefixes", []):
                seen_any = True
                name = common["Prefix"][len(prefix):].rstrip("/")
                yield Descriptor(name=name, type=DescriptorType.DIRECTORY, parent=path)

            for item in page.get("Contents", []):
                seen_any = True
                if item["Key"] == prefix:
                    continue
                yield Descriptor(
                    name=item["Key"][len(prefix):],
                    type=DescriptorType.OBJECT,
                    size=item.get("Size", 0),
                    etag=item.get("ETag"),
                    mtime=str(item["LastModified"]) if item.get("LastModified") else None,
                    parent=path,
                )

            if not page.get("IsTruncated"):
                break
            token = page.get("NextContinuationToken")

        if not seen_any:
            raise NotFoundError(f"Directory not found in S3: {path}", code="NoSuchKey", path=path)

    async def open_read(self, path: str) -> ObjectReader:
        response = await self._call(path, "get_object", Key=self._key(path))
        return FileObjectReader(response["Body"])

    async def open_write(self, path: str) -> ObjectWriter:
        key = self._key(path)

        async def commit(spool: IO[bytes], size: int) -> None:
            try:
                await asyncio.to_thread(self.s3_client.upload_fileobj, spool, self.bucket_name, key)
            except (ClientError, BotoCoreError) as exc:
                raise _translate(exc, path) from exc
            logger.debug(f"[S3Gateway] stored {size} bytes at {key}")

        return SpooledObjectWriter(commit)

    async def link(self, source: str, dest: str) -> None:
        source_key = self._key(source)
        if not await self._exists(source_key):
            if await self._exists(self._marker(source)):
                raise BackendError(
                    f"Cannot link a directory: {source}", code="LinkNotObject", path=source
                )
            raise NotFoundError(f"Source not found in S3: {source}", code="NoSuchKey", path=source)
        await self._call(
            dest,
            "copy_object",
            Key=self._key(dest),
            CopySource={"Bucket": self.bucket_name, "Key": source_key},
        )

    async def unlink(self, path: str) -> None:
        key = self._key(path)
        if await self._exists(key):
            await self._call(path, "delete_object", Key=key)
            return
        marker = self._marker(path)
        if not await self._exists(marker):
            raise NotFoundError(f"Not found in S3: {path}", code="NoSuchKey", path=path)
        if await self._has_children(path):
            raise BackendError(f"Directory not empty: {path}", code="DirectoryNotEmpty", path=path)
        await self._call(path, "delete_object", Key=marker)

    async def stat(self, path: str) -> Descriptor:
        name = posixpath.basename(self._key(path))
        parent = posixpath.dirname(self._key(path))
        try:
            response = await self._call(path, "head_object", Key=self._key(path))
            return Descriptor(
                name=name,
                type=DescriptorType.OBJECT,
                size=response.get("ContentLength", 0),
                etag=response.get("ETag"),
                mtime=str(response["LastModified"]) if response.get("LastModified") else None,
                parent=parent,
            )
        except NotFoundError:
            if await self._exists(self._marker(path)) or await self._has_children(path):
                return Descriptor(name=name, type=DescriptorType.DIRECTORY, parent=parent)
            raise

    async def create_multipart_upload(self, path: str, tenant: Tenant) -> str:
        response = await self._call(
            path,
            "create_multipart_upload",
            Key=self._key(path),
            Metadata={"account-id": tenant.account_id, "app-id": tenant.app_id},
        )
        return response["UploadId"]
