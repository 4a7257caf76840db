"""
Unit tests for object store backends.

Tests cover:
- InMemoryObjectStore upload/download/list and failure injection
- S3ObjectStore request construction and error translation (mocked client)
- Multipart upload of large files
"""

import os
import tempfile
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from dbaas.snapchain.config import S3Config
from dbaas.snapchain.store import (
    InMemoryObjectStore,
    ObjectNotFoundError,
    ObjectStore,
    S3ObjectStore,
    StoreError,
)

KEY = "backups/users/2024-01-01_000000/2024-01-01_000000/users.schema.gz"


@pytest.fixture
def work_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


def write_file(path, data):
    with open(path, "wb") as f:
        f.write(data)
    return path


class TestInMemoryObjectStore:
    """Tests for InMemoryObjectStore."""

    @pytest.fixture
    def store(self):
        return InMemoryObjectStore()

    def test_satisfies_protocol(self, store):
        assert isinstance(store, ObjectStore)

    @pytest.mark.asyncio
    async def test_upload_and_download(self, store, work_dir):
        source = write_file(os.path.join(work_dir, "users.schema.gz"), b"schema")

        await store.upload(source, KEY)
        local_path = await store.download(KEY, os.path.join(work_dir, "local"))

        assert local_path == os.path.join(work_dir, "local", KEY)
        with open(local_path, "rb") as f:
            assert f.read() == b"schema"

    @pytest.mark.asyncio
    async def test_list_by_prefix_sorted(self, store):
        store.put("backups/users/b")
        store.put("backups/users/a")
        store.put("backups/orders/a")

        assert await store.list("backups/users/") == ["backups/users/a", "backups/users/b"]
        assert await store.list("nothing/") == []

    @pytest.mark.asyncio
    async def test_download_missing_key(self, store, work_dir):
        with pytest.raises(ObjectNotFoundError) as exc_info:
            await store.download("backups/users/missing", work_dir)

        assert exc_info.value.key == "backups/users/missing"
        assert isinstance(exc_info.value, StoreError)

    @pytest.mark.asyncio
    async def test_injected_failures(self, store, work_dir):
        source = write_file(os.path.join(work_dir, "f"), b"x")
        store.fail_uploads("/10.0.0.2/")
        store.fail_listing()

        await store.upload(source, "backups/users/t/t/10.0.0.1/f")
        with pytest.raises(StoreError):
            await store.upload(source, "backups/users/t/t/10.0.0.2/f")
        with pytest.raises(StoreError):
            await store.list("backups/")

        assert store.keys() == ["backups/users/t/t/10.0.0.1/f"]
        assert len(store.upload_calls) == 2


class FakeBody:
    """Streaming body returned by a mocked get_object."""

    def __init__(self, data):
        self.data = data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def read(self, size):
        chunk, self.data = self.data[:size], self.data[size:]
        return chunk


class FakePaginator:
    def __init__(self, pages):
        self.pages = pages
        self.kwargs = None

    def paginate(self, **kwargs):
        self.kwargs = kwargs
        return self._iterate()

    async def _iterate(self):
        for page in self.pages:
            yield page


def client_error(code, operation="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestS3ObjectStore:
    """Tests for S3ObjectStore with a mocked aiobotocore client."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.put_object = AsyncMock()
        client.get_object = AsyncMock()
        client.create_multipart_upload = AsyncMock(return_value={"UploadId": "upload-1"})
        client.upload_part = AsyncMock(side_effect=lambda **kw: {"ETag": f"etag-{kw['PartNumber']}"})
        client.complete_multipart_upload = AsyncMock()
        client.abort_multipart_upload = AsyncMock()
        return client

    @pytest.fixture
    def store(self, client):
        store = S3ObjectStore(S3Config(bucket="test-bucket"))
        store._s3_client = client
        return store

    def test_satisfies_protocol(self):
        assert isinstance(S3ObjectStore(S3Config()), ObjectStore)

    @pytest.mark.asyncio
    async def test_requires_connection(self, work_dir):
        store = S3ObjectStore(S3Config())

        assert not store.is_connected
        with pytest.raises(StoreError):
            await store.list("backups/")

    @pytest.mark.asyncio
    async def test_upload_puts_object(self, store, client, work_dir):
        source = write_file(os.path.join(work_dir, "f"), b"payload")

        await store.upload(source, KEY)

        client.put_object.assert_awaited_once_with(Bucket="test-bucket", Key=KEY, Body=b"payload")

    @pytest.mark.asyncio
    async def test_upload_error_is_translated(self, store, client, work_dir):
        source = write_file(os.path.join(work_dir, "f"), b"payload")
        client.put_object.side_effect = client_error("AccessDenied", "PutObject")

        with pytest.raises(StoreError) as exc_info:
            await store.upload(source, KEY)

        assert KEY in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_small_file_skips_multipart(self, store, client, work_dir):
        source = write_file(os.path.join(work_dir, "f"), b"payload")

        await store.upload(source, KEY)

        client.create_multipart_upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_large_file_uploaded_in_parts(self, client, work_dir):
        store = S3ObjectStore(S3Config(bucket="test-bucket"), multipart_threshold=8, multipart_part_size=8)
        store._s3_client = client
        source = write_file(os.path.join(work_dir, "f"), b"0123456789abcdefXYZ")

        await store.upload(source, KEY)

        client.put_object.assert_not_awaited()
        client.create_multipart_upload.assert_awaited_once_with(Bucket="test-bucket", Key=KEY)
        bodies = [call.kwargs["Body"] for call in client.upload_part.await_args_list]
        assert bodies == [b"01234567", b"89abcdef", b"XYZ"]
        assert [call.kwargs["UploadId"] for call in client.upload_part.await_args_list] == ["upload-1"] * 3
        client.complete_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket",
            Key=KEY,
            UploadId="upload-1",
            MultipartUpload={
                "Parts": [
                    {"PartNumber": 1, "ETag": "etag-1"},
                    {"PartNumber": 2, "ETag": "etag-2"},
                    {"PartNumber": 3, "ETag": "etag-3"},
                ]
            },
        )
        client.abort_multipart_upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_part_aborts_upload(self, client, work_dir):
        store = S3ObjectStore(S3Config(bucket="test-bucket"), multipart_threshold=8, multipart_part_size=8)
        store._s3_client = client
        source = write_file(os.path.join(work_dir, "f"), b"0123456789abcdef")
        client.upload_part.side_effect = client_error("SlowDown", "UploadPart")

        with pytest.raises(StoreError) as exc_info:
            await store.upload(source, KEY)

        assert KEY in str(exc_info.value)
        client.abort_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket", Key=KEY, UploadId="upload-1"
        )
        client.complete_multipart_upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connect_error_is_translated(self):
        session = MagicMock()
        client_ctx = MagicMock()
        error = EndpointConnectionError(endpoint_url="http://minio:9000")
        client_ctx.__aenter__ = AsyncMock(side_effect=error)
        session.create_client.return_value = client_ctx
        store = S3ObjectStore(S3Config(bucket="test-bucket", endpoint_url="http://minio:9000"))

        with patch("dbaas.snapchain.store.s3.get_session", return_value=session):
            with pytest.raises(StoreError) as exc_info:
                await store.connect()

        assert "test-bucket" in str(exc_info.value)
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_download_streams_body(self, store, client, work_dir):
        client.get_object.return_value = {"Body": FakeBody(b"a" * 10)}

        local_path = await store.download(KEY, work_dir)

        assert local_path == os.path.join(work_dir, KEY)
        with open(local_path, "rb") as f:
            assert f.read() == b"a" * 10
        client.get_object.assert_awaited_once_with(Bucket="test-bucket", Key=KEY)

    @pytest.mark.asyncio
    async def test_download_missing_key(self, store, client, work_dir):
        client.get_object.side_effect = client_error("NoSuchKey")

        with pytest.raises(ObjectNotFoundError):
            await store.download(KEY, work_dir)

    @pytest.mark.asyncio
    async def test_list_follows_pages(self, store, client):
        paginator = FakePaginator(
            [
                {"Contents": [{"Key": "backups/users/b"}, {"Key": "backups/users/a"}]},
                {"Contents": [{"Key": "backups/users/c"}]},
                {},
            ]
        )
        client.get_paginator.return_value = paginator

        keys = await store.list("backups/users/")

        assert keys == ["backups/users/a", "backups/users/b", "backups/users/c"]
        client.get_paginator.assert_called_once_with("list_objects_v2")
        assert paginator.kwargs == {"Bucket": "test-bucket", "Prefix": "backups/users/"}
