"""Abstract backend gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from mantabox.storage.streams import ObjectReader, ObjectWriter


@dataclass(frozen=True)
class Tenant:
    """The (account, application) pair that owns a subtree of the namespace."""

    account_id: str
    app_id: str


class DescriptorType(str, Enum):
    OBJECT = "object"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class Descriptor:
    """A directory or object as reported by the backend."""

    name: str
    type: DescriptorType
    size: int = 0
    etag: Optional[str] = None
    mtime: Optional[str] = None
    parent: Optional[str] = None


class BackendGateway(ABC):
    """Operations the driver needs from a remote storage client.

    All paths are resolved backend paths. Every method may raise
    ``BackendError``; a missing path is reported as ``NotFoundError``.
    """

    provider = "unknown"

    @abstractmethod
    async def ensure_path_recursive(self, path: str) -> None:
        """
        Create ``path`` and every missing ancestor directory.

        Args:
            path: Directory path (e.g., "~~/stor/AB/12/CD/AB12CD/app1/notes")

        Raises:
            BackendError: If a component exists as an object or the backend refuses
        """
        pass

    @abstractmethod
    def list(self, path: str) -> AsyncIterator[Descriptor]:
        """
        Stream the children of a directory as they arrive.

        The returned iterator is finite and cannot be restarted. A failure ends
        it by raising in place of the next item.

        Raises:
            NotFoundError: If the directory does not exist
            BackendError: On any other failure
        """
        pass

    @abstractmethod
    async def open_read(self, path: str) -> ObjectReader:
        """
        Open an object for reading. The caller owns and must close the reader.

        Raises:
            NotFoundError: If the object does not exist
        """
        pass

    @abstractmethod
    async def open_write(self, path: str) -> ObjectWriter:
        """
        Open an object for writing. Content is committed when the writer closes.

        The parent directory must already exist.
        """
        pass

    @abstractmethod
    async def link(self, source: str, dest: str) -> None:
        """
        Give the object at ``source`` a second name ``dest``.

        Single-object only: a directory source raises ``BackendError``.
        An existing ``dest`` is replaced.
        """
        pass

    @abstractmethod
    async def unlink(self, path: str) -> None:
        """
        Remove a single object or directory node.

        Raises:
            NotFoundError: If nothing exists at ``path``
        """
        pass

    @abstractmethod
    async def stat(self, path: str) -> Descriptor:
        """
        Describe the object or directory at ``path``.

        Raises:
            NotFoundError: If nothing exists at ``path``
        """
        pass

    @abstractmethod
    async def create_multipart_upload(self, path: str, tenant: Tenant) -> str:
        """
        Start a multipart upload staged at ``path`` on behalf of ``tenant``.

        Returns:
            Backend upload id
        """
        pass

    async def aclose(self) -> None:
        """Release transport resources."""
        return None
