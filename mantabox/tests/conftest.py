import io
import logging

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from mantabox.core.errors import BackendError, NotFoundError
from mantabox.driver import StorageDriver
from mantabox.storage.gateway import BackendGateway, Descriptor, DescriptorType, Tenant
from mantabox.storage.streams import FileObjectReader, SpooledObjectWriter


class MemoryGateway(BackendGateway):
    """In-memory backend that records calls and raises injected failures."""

    provider = "memory"

    def __init__(self):
        self.objects = {}
        self.directories = set()
        self.calls = []
        self.failures = {}
        self.list_failures = {}
        self.closed = False

    def fail(self, method, path, error):
        self.failures[(method, path)] = error

    def fail_list_after(self, path, count, error):
        self.list_failures[path] = (count, error)

    def _record(self, method, *args):
        self.calls.append((method,) + args)
        error = self.failures.get((method, args[0]))
        if error is not None:
            raise error

    def _children(self, path):
        prefix = path + "/"
        children = []
        for directory in sorted(self.directories):
            name = directory[len(prefix):]
            if directory.startswith(prefix) and name and "/" not in name:
                children.append(Descriptor(name=name, type=DescriptorType.DIRECTORY))
        for key in sorted(self.objects):
            name = key[len(prefix):]
            if key.startswith(prefix) and "/" not in name:
                children.append(Descriptor(name=name, type=DescriptorType.OBJECT, size=len(self.objects[key])))
        return children

    async def ensure_path_recursive(self, path):
        self._record("ensure_path_recursive", path)
        parts = path.split("/")
        for depth in range(1, len(parts) + 1):
            self.directories.add("/".join(parts[:depth]))

    async def list(self, path):
        self._record("list", path)
        if path not in self.directories:
            raise NotFoundError(f"not found: {path}", code="ResourceNotFound", path=path)
        fail_after = self.list_failures.get(path)
        for index, descriptor in enumerate(self._children(path)):
            if fail_after and index == fail_after[0]:
                raise fail_after[1]
            yield descriptor

    async def open_read(self, path):
        self._record("open_read", path)
        if path not in self.objects:
            raise NotFoundError(f"not found: {path}", code="ResourceNotFound", path=path)
        return FileObjectReader(io.BytesIO(self.objects[path]))

    async def open_write(self, path):
        self._record("open_write", path)

        async def commit(spool, size):
            self.objects[path] = spool.read()

        return SpooledObjectWriter(commit)

    async def link(self, source, dest):
        self._record("link", source, dest)
        if source in self.directories:
            raise BackendError(f"cannot link directory: {source}", code="LinkNotObject", path=source)
        if source not in self.objects:
            raise NotFoundError(f"not found: {source}", code="SourceObjectNotFound", path=source)
        self.objects[dest] = self.objects[source]

    async def unlink(self, path):
        self._record("unlink", path)
        if path in self.objects:
            del self.objects[path]
        elif path in self.directories:
            if self._children(path):
                raise BackendError(f"not empty: {path}", code="DirectoryNotEmpty", path=path)
            self.directories.discard(path)
        else:
            raise NotFoundError(f"not found: {path}", code="ResourceNotFound", path=path)

    async def stat(self, path):
        self._record("stat", path)
        name = path.rsplit("/", 1)[-1]
        if path in self.objects:
            return Descriptor(name=name, type=DescriptorType.OBJECT, size=len(self.objects[path]))
        if path in self.directories:
            return Descriptor(name=name, type=DescriptorType.DIRECTORY)
        raise NotFoundError(f"not found: {path}", code="ResourceNotFound", path=path)

    async def create_multipart_upload(self, path, tenant):
        self._record("create_multipart_upload", path, tenant)
        return f"upload-{len(self.calls)}"

    async def aclose(self):
        self.closed = True


@pytest.fixture
def tenant():
    return Tenant(account_id="AB12CD34EF5678", app_id="app1")


@pytest.fixture
def gateway():
    return MemoryGateway()


@pytest.fixture
def driver(gateway):
    return StorageDriver(gateway, "base", logger=logging.getLogger("mantabox.tests"))


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_key_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture(autouse=True)
def package_logger():
    logger = logging.getLogger("mantabox")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    logger.handlers = []
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers, level, logger.propagate = saved
    logger.setLevel(level)
