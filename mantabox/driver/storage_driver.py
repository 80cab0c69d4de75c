"""Dropbox-style storage operations on top of a backend gateway.

Each operation resolves its paths first, then awaits one to three gateway
calls in order; the first failure ends the operation. There is no retry and
no locking here: retries belong to the gateway transport, and concurrent
operations on the same path may interleave.

Compound operations (copy, move, delete) are not atomic. A move whose unlink
fails after a successful link leaves both names live and raises
``PartialCompoundFailure``.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

from mantabox.core.errors import (
    BackendError,
    DriverError,
    NotFoundError,
    PartialCompoundFailure,
    PathRejectedError,
    classify_error,
)
from mantabox.core.logging import get_logger
from mantabox.driver.entries import Entry, EntryKind, to_entry
from mantabox.driver.paths import PathResolver, is_root
from mantabox.storage.gateway import BackendGateway, DescriptorType, Tenant
from mantabox.storage.streams import ObjectReader, ObjectWriter


class StorageDriver:
    def __init__(
        self,
        gateway: BackendGateway,
        base_path: str,
        logger: Optional[logging.Logger] = None,
    ):
        self.gateway = gateway
        self.resolver = PathResolver(base_path)
        self.logger = logger or get_logger("driver")
        self.logger.debug(f"[StorageDriver] using {gateway.provider} store, base path {base_path}")

    @property
    def provider(self) -> str:
        return self.gateway.provider

    async def __aenter__(self) -> "StorageDriver":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.gateway.aclose()

    @staticmethod
    def _extra(tenant: Tenant, operation: str, path: Optional[str]) -> dict:
        return {
            "account_id": tenant.account_id,
            "app_id": tenant.app_id,
            "operation": operation,
            "path": path,
        }

    @contextmanager
    def _failures(self, operation: str, tenant: Tenant, path: Optional[str]) -> Iterator[None]:
        try:
            yield
        except Exception as exc:
            if isinstance(exc, DriverError):
                exc.annotate(operation, path)
            self.logger.error(
                f"[StorageDriver] {operation} failed ({classify_error(exc)}): {exc}",
                extra=self._extra(tenant, operation, path),
            )
            raise

    def _resolve(self, operation: str, tenant: Tenant, logical_path: str) -> str:
        with self._failures(operation, tenant, logical_path):
            return self.resolver.resolve(tenant, logical_path)

    def _object_path(self, operation: str, tenant: Tenant, logical_path: str) -> str:
        with self._failures(operation, tenant, logical_path):
            if is_root(logical_path):
                raise PathRejectedError(f"Path does not name an object: {logical_path!r}")
            return self.resolver.resolve(tenant, logical_path)

    async def _require_object(self, full_path: str) -> None:
        info = await self.gateway.stat(full_path)
        if info.type != DescriptorType.OBJECT:
            raise BackendError(
                f"Not an object: {full_path}", code="LinkNotObject", path=full_path
            )

    async def create_directory(self, tenant: Tenant, dir_path: str) -> Entry:
        full_path = self._resolve("create_directory", tenant, dir_path)
        with self._failures("create_directory", tenant, full_path):
            await self.gateway.ensure_path_recursive(full_path)
        return Entry(name=dir_path, kind=EntryKind.FOLDER)

    async def list_directory(self, tenant: Tenant, dir_path: str) -> list[Entry]:
        full_path = self._resolve("list_directory", tenant, dir_path)
        entries: list[Entry] = []
        with self._failures("list_directory", tenant, full_path):
            try:
                async for descriptor in self.gateway.list(full_path):
                    entries.append(to_entry(descriptor))
            except NotFoundError:
                if not is_root(dir_path):
                    raise
                # The tenant root only appears after the first write
                self.logger.debug(
                    "[StorageDriver] tenant root not created yet, empty listing",
                    extra=self._extra(tenant, "list_directory", full_path),
                )
                return []

        self.logger.info(
            f"[StorageDriver] listed {len(entries)} entries",
            extra=self._extra(tenant, "list_directory", full_path),
        )
        return entries

    async def get_object(self, tenant: Tenant, filename: str) -> Optional[ObjectReader]:
        """Open ``filename`` for reading, or return None when it does not exist."""
        full_path = self._resolve("get_object", tenant, filename)
        with self._failures("get_object", tenant, full_path):
            try:
                return await self.gateway.open_read(full_path)
            except NotFoundError:
                self.logger.debug(
                    "[StorageDriver] object not found",
                    extra=self._extra(tenant, "get_object", full_path),
                )
                return None

    async def put_object(self, tenant: Tenant, filename: str) -> ObjectWriter:
        """Open ``filename`` for writing, replacing any existing object.

        The caller writes to the returned sink and closes it to commit.
        """
        full_path = self._object_path("put_object", tenant, filename)
        with self._failures("put_object", tenant, full_path):
            await self.gateway.ensure_path_recursive(self.resolver.parent(tenant, filename))
            return await self.gateway.open_write(full_path)

    async def copy_object(self, tenant: Tenant, filename: str, new_filename: str) -> Entry:
        """Copy a single object. Folder sources fail in the gateway's ``link``.

        Copying an object onto its own path only checks that it exists.
        """
        full_path = self._object_path("copy_object", tenant, filename)
        new_full_path = self._object_path("copy_object", tenant, new_filename)
        with self._failures("copy_object", tenant, new_full_path):
            if full_path == new_full_path:
                await self._require_object(full_path)
            else:
                await self.gateway.ensure_path_recursive(self.resolver.parent(tenant, new_filename))
                await self.gateway.link(full_path, new_full_path)
        return Entry(name=new_filename, kind=EntryKind.FILE)

    async def move_object(self, tenant: Tenant, filename: str, new_filename: str) -> Entry:
        full_path = self._object_path("move_object", tenant, filename)
        new_full_path = self._object_path("move_object", tenant, new_filename)
        entry = Entry(name=new_filename, kind=EntryKind.FILE)
        with self._failures("move_object", tenant, new_full_path):
            # Same path: unlinking the source would remove the only copy
            if full_path == new_full_path:
                await self._require_object(full_path)
                return entry
            await self.gateway.ensure_path_recursive(self.resolver.parent(tenant, new_filename))
            await self.gateway.link(full_path, new_full_path)
            try:
                await self.gateway.unlink(full_path)
            except DriverError as exc:
                raise PartialCompoundFailure(
                    f"Linked {new_filename!r} but could not remove source {filename!r}",
                    entry=entry,
                    source=full_path,
                    operation="move_object",
                    path=new_full_path,
                ) from exc
        return entry

    async def delete_object(self, tenant: Tenant, filename: str) -> Entry:
        """Remove a file or folder; non-empty folders behave as the backend defines."""
        full_path = self._object_path("delete_object", tenant, filename)
        with self._failures("delete_object", tenant, full_path):
            info = await self.gateway.stat(full_path)
            self.logger.info(
                f"[StorageDriver] got entry info on delete: {info.type.value}",
                extra=self._extra(tenant, "delete_object", full_path),
            )
            await self.gateway.unlink(full_path)

        if info.type == DescriptorType.OBJECT:
            return Entry(name=filename, kind=EntryKind.FILE, size=info.size)
        return Entry(name=filename, kind=EntryKind.FOLDER)

    async def start_multipart_upload(self, tenant: Tenant) -> str:
        staging_path = self.resolver.staging_path(uuid.uuid4().hex)
        with self._failures("start_multipart_upload", tenant, staging_path):
            upload_id = await self.gateway.create_multipart_upload(staging_path, tenant)
        self.logger.info(
            f"[StorageDriver] created upload {upload_id}",
            extra=self._extra(tenant, "start_multipart_upload", staging_path),
        )
        return upload_id
