import json

import httpx
import pytest

from mantabox.core.errors import BackendError, NotFoundError, TransientBackendError
from mantabox.core.retry import RetryConfig
from mantabox.storage.gateway import DescriptorType, Tenant
from mantabox.storage.manta_gateway import MantaGateway
from mantabox.storage.signer import RequestSigner

DIRECTORY = "application/x-json-stream; type=directory"
FAST_RETRY = RetryConfig(
    max_attempts=2,
    base_delay_seconds=0.001,
    max_delay_seconds=0.002,
    retryable_exceptions=(TransientBackendError,),
)


def _gateway(rsa_key, handler, page_size=1000):
    signer = RequestSigner(user="tester", key_id="aa:bb", private_key=rsa_key)
    client = httpx.AsyncClient(base_url="https://manta.test", transport=httpx.MockTransport(handler))
    return MantaGateway(
        url="https://manta.test",
        signer=signer,
        retry_config=FAST_RETRY,
        http_client=client,
        page_size=page_size,
    )


def _listing(*records):
    body = "\n".join(json.dumps(record) for record in records) + "\n"
    return httpx.Response(200, headers={"content-type": DIRECTORY}, content=body.encode())


def _not_found():
    return httpx.Response(404, json={"code": "ResourceNotFound", "message": "no such path"})


def test_expand_account_root(rsa_key):
    gateway = _gateway(rsa_key, lambda request: httpx.Response(200))
    assert gateway.expand("~~/stor/AB/x") == "/tester/stor/AB/x"
    assert gateway.expand("/tester/public/") == "/tester/public"


@pytest.mark.asyncio
async def test_ensure_path_recursive_creates_each_level(rsa_key):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    gateway = _gateway(rsa_key, handler)
    await gateway.ensure_path_recursive("~~/stor/AB/12")

    assert [(r.method, r.url.path) for r in requests] == [
        ("PUT", "/tester/stor/AB"),
        ("PUT", "/tester/stor/AB/12"),
    ]
    assert all(r.headers["content-type"] == "application/json; type=directory" for r in requests)
    assert requests[0].headers["authorization"].startswith('Signature keyId="/tester/keys/aa:bb"')
    assert "date" in requests[0].headers


@pytest.mark.asyncio
async def test_list_pages_through_markers(rsa_key):
    markers = []

    def handler(request):
        marker = request.url.params.get("marker")
        markers.append(marker)
        if marker is None:
            return _listing({"name": "a", "type": "directory"}, {"name": "b", "type": "object", "size": 3})
        if marker == "b":
            return _listing({"name": "b", "type": "object", "size": 3}, {"name": "c", "type": "object", "size": 1})
        return _listing({"name": "c", "type": "object", "size": 1})

    gateway = _gateway(rsa_key, handler, page_size=2)
    descriptors = [d async for d in gateway.list("~~/stor/dir")]

    assert [(d.name, d.type, d.size) for d in descriptors] == [
        ("a", DescriptorType.DIRECTORY, 0),
        ("b", DescriptorType.OBJECT, 3),
        ("c", DescriptorType.OBJECT, 1),
    ]
    assert markers == [None, "b", "c"]


@pytest.mark.asyncio
async def test_list_missing_directory_raises_not_found(rsa_key):
    gateway = _gateway(rsa_key, lambda request: _not_found())

    with pytest.raises(NotFoundError) as excinfo:
        [d async for d in gateway.list("~~/stor/missing")]

    assert excinfo.value.code == "ResourceNotFound"
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_list_on_object_is_rejected(rsa_key):
    gateway = _gateway(rsa_key, lambda request: httpx.Response(200, content=b"file body"))

    with pytest.raises(BackendError) as excinfo:
        [d async for d in gateway.list("~~/stor/a.txt")]

    assert excinfo.value.code == "NotADirectory"


@pytest.mark.asyncio
async def test_open_read_streams_body(rsa_key):
    gateway = _gateway(rsa_key, lambda request: httpx.Response(200, content=b"hello world"))

    reader = await gateway.open_read("~~/stor/a.txt")
    async with reader:
        assert await reader.read(5) == b"hello"
        assert await reader.read() == b" world"


@pytest.mark.asyncio
async def test_open_read_missing_object(rsa_key):
    gateway = _gateway(rsa_key, lambda request: _not_found())

    with pytest.raises(NotFoundError):
        await gateway.open_read("~~/stor/missing.txt")


@pytest.mark.asyncio
async def test_open_write_puts_on_close(rsa_key):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    gateway = _gateway(rsa_key, handler)
    writer = await gateway.open_write("~~/stor/notes/todo.txt")
    assert requests == []

    async with writer:
        await writer.write(b"buy ")
        await writer.write(b"milk")

    assert len(requests) == 1
    assert requests[0].method == "PUT"
    assert requests[0].url.path == "/tester/stor/notes/todo.txt"
    assert requests[0].headers["content-type"] == "text/plain"
    assert requests[0].content == b"buy milk"


@pytest.mark.asyncio
async def test_link_sends_snaplink(rsa_key):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    gateway = _gateway(rsa_key, handler)
    await gateway.link("~~/stor/a.txt", "~~/stor/b.txt")

    assert requests[0].method == "PUT"
    assert requests[0].url.path == "/tester/stor/b.txt"
    assert requests[0].headers["content-type"] == "application/json; type=link"
    assert requests[0].headers["location"] == "/tester/stor/a.txt"


@pytest.mark.asyncio
async def test_link_directory_fails(rsa_key):
    gateway = _gateway(
        rsa_key,
        lambda request: httpx.Response(400, json={"code": "LinkNotObject", "message": "is a directory"}),
    )

    with pytest.raises(BackendError) as excinfo:
        await gateway.link("~~/stor/dir", "~~/stor/copy")

    assert excinfo.value.code == "LinkNotObject"
    assert not isinstance(excinfo.value, NotFoundError)


@pytest.mark.asyncio
async def test_unlink_sends_delete(rsa_key):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    gateway = _gateway(rsa_key, handler)
    await gateway.unlink("~~/stor/a.txt")

    assert (requests[0].method, requests[0].url.path) == ("DELETE", "/tester/stor/a.txt")


@pytest.mark.asyncio
async def test_stat_object_and_directory(rsa_key):
    def handler(request):
        if request.url.path.endswith("/dir"):
            return httpx.Response(200, headers={"content-type": DIRECTORY})
        return httpx.Response(
            200,
            headers={"content-type": "text/plain", "content-length": "12", "etag": "e1"},
        )

    gateway = _gateway(rsa_key, handler)
    directory = await gateway.stat("~~/stor/dir")
    obj = await gateway.stat("~~/stor/a.txt")

    assert directory.type == DescriptorType.DIRECTORY
    assert (obj.type, obj.size, obj.etag, obj.name) == (DescriptorType.OBJECT, 12, "e1", "a.txt")


@pytest.mark.asyncio
async def test_create_multipart_upload(rsa_key):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(201, json={"id": "upload-123", "partsDirectory": "/tester/uploads/u"})

    gateway = _gateway(rsa_key, handler)
    upload_id = await gateway.create_multipart_upload("~~/stor/.uploads/abc", Tenant("AB12", "app1"))

    body = json.loads(requests[0].content)
    assert upload_id == "upload-123"
    assert (requests[0].method, requests[0].url.path) == ("POST", "/tester/uploads")
    assert body["objectPath"] == "/tester/stor/.uploads/abc"
    assert body["headers"] == {"m-account-id": "AB12", "m-app-id": "app1"}


@pytest.mark.asyncio
async def test_transient_failures_are_retried(rsa_key):
    responses = [httpx.Response(503, json={"code": "ServiceUnavailable"}), httpx.Response(204)]

    gateway = _gateway(rsa_key, lambda request: responses.pop(0))
    await gateway.ensure_path_recursive("~~/stor/AB")

    assert responses == []


@pytest.mark.asyncio
async def test_transport_errors_become_transient(rsa_key):
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _gateway(rsa_key, handler)

    with pytest.raises(TransientBackendError):
        await gateway.stat("~~/stor/a.txt")

    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_unreadable_listing_entry_is_invalid_response(rsa_key):
    def handler(request):
        return httpx.Response(200, headers={"content-type": DIRECTORY}, content=b'{"name": "a"}\nnot json\n')

    gateway = _gateway(rsa_key, handler)

    with pytest.raises(BackendError) as excinfo:
        [d async for d in gateway.list("~~/stor/dir")]

    assert excinfo.value.code == "InvalidResponse"
    assert excinfo.value.path == "/tester/stor/dir"
