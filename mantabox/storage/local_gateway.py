"""Local filesystem gateway."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import IO, AsyncIterator

from mantabox.core.errors import BackendError, NotFoundError
from mantabox.storage.gateway import BackendGateway, Descriptor, DescriptorType, Tenant
from mantabox.storage.streams import FileObjectReader, ObjectReader, ObjectWriter, SpooledObjectWriter

UPLOAD_MANIFEST = "upload.json"


class LocalGateway(BackendGateway):
    """Gateway storing the backend namespace under a local directory."""

    provider = "local"

    def __init__(self, root: str):
        """
        Initialize local gateway.

        Args:
            root: Directory standing in for the backend namespace root
        """
        self.root = Path(root)
        if not self.root.is_dir():
            raise ValueError(f"Local storage root does not exist: {root}")

    def _resolve(self, path: str) -> Path:
        """Convert a backend path to an absolute filesystem path."""
        if path.startswith("~~"):
            path = path[2:]
        return self.root / path.lstrip("/\\")

    def _descriptor(self, file_path: Path) -> Descriptor:
        stat = file_path.stat()
        is_dir = file_path.is_dir()
        return Descriptor(
            name=file_path.name,
            type=DescriptorType.DIRECTORY if is_dir else DescriptorType.OBJECT,
            size=0 if is_dir else stat.st_size,
            mtime=str(stat.st_mtime),
            parent=str(file_path.parent),
        )

    async def ensure_path_recursive(self, path: str) -> None:
        dir_path = self._resolve(path)
        try:
            await asyncio.to_thread(dir_path.mkdir, parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as exc:
            raise BackendError(
                f"Path component is an object: {path}", code="ParentNotDirectory", path=path
            ) from exc
        except OSError as exc:
            raise BackendError(f"Failed to create directory: {path}", path=path) from exc

    async def list(self, path: str) -> AsyncIterator[Descriptor]:
        dir_path = self._resolve(path)
        if not dir_path.exists():
            raise NotFoundError(f"Directory not found: {path}", code="ResourceNotFound", path=path)
        if not dir_path.is_dir():
            raise BackendError(f"Not a directory: {path}", code="NotADirectory", path=path)

        with os.scandir(dir_path) as entries:
            for entry in entries:
                if entry.name.startswith(".mantabox-"):
                    continue
                yield self._descriptor(Path(entry.path))

    async def open_read(self, path: str) -> ObjectReader:
        file_path = self._resolve(path)
        if file_path.is_dir():
            raise BackendError(f"Not an object: {path}", code="NotAnObject", path=path)
        try:
            handle = await asyncio.to_thread(open, file_path, "rb")
        except FileNotFoundError as exc:
            raise NotFoundError(f"File not found: {path}", code="ResourceNotFound", path=path) from exc
        except PermissionError as exc:
            raise BackendError(f"Permission denied: {path}", code="Forbidden", path=path) from exc
        return FileObjectReader(handle)

    async def open_write(self, path: str) -> ObjectWriter:
        file_path = self._resolve(path)
        if not file_path.parent.is_dir():
            raise NotFoundError(
                f"Parent directory not found: {path}", code="DirectoryDoesNotExist", path=path
            )

        def replace(spool: IO[bytes]) -> None:
            fd, temp_path = tempfile.mkstemp(prefix=".mantabox-", dir=file_path.parent)
            try:
                with os.fdopen(fd, "wb") as handle:
                    shutil.copyfileobj(spool, handle)
                os.replace(temp_path, file_path)
            except BaseException:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise

        async def commit(spool: IO[bytes], size: int) -> None:
            try:
                await asyncio.to_thread(replace, spool)
            except OSError as exc:
                raise BackendError(f"Failed to write file: {path}", path=path) from exc

        return SpooledObjectWriter(commit)

    async def link(self, source: str, dest: str) -> None:
        source_path = self._resolve(source)
        dest_path = self._resolve(dest)
        if not source_path.exists():
            raise NotFoundError(f"Source not found: {source}", code="SourceObjectNotFound", path=source)
        if source_path.is_dir():
            raise BackendError(f"Cannot link a directory: {source}", code="LinkNotObject", path=source)
        def replace_with_link() -> None:
            # The old destination stays in place until the new link exists
            temp_path = dest_path.with_name(f".mantabox-{uuid.uuid4().hex}")
            os.link(source_path, temp_path)
            try:
                os.replace(temp_path, dest_path)
            finally:
                # rename() is a no-op when both names already share an inode
                if os.path.lexists(temp_path):
                    os.unlink(temp_path)

        try:
            await asyncio.to_thread(replace_with_link)
        except OSError as exc:
            raise BackendError(f"Failed to link {source} -> {dest}", path=dest) from exc

    async def unlink(self, path: str) -> None:
        file_path = self._resolve(path)
        if not file_path.exists():
            raise NotFoundError(f"Not found: {path}", code="ResourceNotFound", path=path)
        try:
            if file_path.is_dir():
                await asyncio.to_thread(file_path.rmdir)
            else:
                await asyncio.to_thread(file_path.unlink)
        except OSError as exc:
            if file_path.is_dir():
                raise BackendError(f"Directory not empty: {path}", code="DirectoryNotEmpty", path=path) from exc
            raise BackendError(f"Failed to delete: {path}", path=path) from exc

    async def stat(self, path: str) -> Descriptor:
        file_path = self._resolve(path)
        try:
            return self._descriptor(file_path)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Not found: {path}", code="ResourceNotFound", path=path) from exc

    async def create_multipart_upload(self, path: str, tenant: Tenant) -> str:
        upload_id = uuid.uuid4().hex
        staging = self._resolve(path)
        manifest = {
            "id": upload_id,
            "account_id": tenant.account_id,
            "app_id": tenant.app_id,
        }
        try:
            staging.mkdir(parents=True, exist_ok=True)
            (staging / UPLOAD_MANIFEST).write_text(json.dumps(manifest))
        except OSError as exc:
            raise BackendError(f"Failed to stage upload: {path}", path=path) from exc
        return upload_id
