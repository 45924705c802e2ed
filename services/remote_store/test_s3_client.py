"""Unit tests for the S3 client."""

import asyncio
import threading
import time

import pytest
from unittest.mock import AsyncMock, Mock, patch
from botocore.exceptions import ClientError, EndpointConnectionError

from services.remote_store.s3_client import FOLDER_CONTENT_TYPE, S3Client, folder_key
from shared.exceptions import ObjectNotFoundError, RemoteStoreError


def client_error(code, operation="PutObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def mock_boto_client():
    """Create a mock boto3 S3 client."""
    return Mock()


@pytest.fixture
def s3(mock_boto_client):
    """Create an S3Client wired to the mocked boto3 client."""
    with patch('services.remote_store.s3_client.boto3.client', return_value=mock_boto_client):
        return S3Client(bucket_name="journal-bucket", region="eu-west-1")


@pytest.fixture
def no_sleep():
    with patch('services.remote_store.retry.asyncio.sleep', new_callable=AsyncMock) as sleep:
        yield sleep


def test_folder_key():
    assert folder_key("dailycraft/journal") == "dailycraft/journal/"
    assert folder_key("dailycraft/journal/") == "dailycraft/journal/"


def test_object_url(s3):
    assert s3.object_url("a/b.jpg") == "https://journal-bucket.s3.eu-west-1.amazonaws.com/a/b.jpg"


def test_object_url_custom_endpoint():
    with patch('services.remote_store.s3_client.boto3.client'):
        client = S3Client(bucket_name="b", endpoint_url="http://localhost:9000/")

    assert client.object_url("k") == "http://localhost:9000/b/k"


class TestFolders:
    """Tests for folder markers."""

    @pytest.mark.asyncio
    async def test_create_folder_writes_conditional_marker(self, s3, mock_boto_client):
        created = await s3.create_folder("dailycraft/journal/u1")

        assert created is True
        mock_boto_client.put_object.assert_called_once_with(
            Bucket="journal-bucket",
            Key="dailycraft/journal/u1/",
            Body=b"",
            ContentType=FOLDER_CONTENT_TYPE,
            IfNoneMatch="*"
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["PreconditionFailed", "ConditionalRequestConflict", "412"])
    async def test_create_folder_lost_race_is_not_an_error(self, s3, mock_boto_client, code):
        mock_boto_client.put_object.side_effect = client_error(code)

        assert await s3.create_folder("dailycraft/journal/u1") is False

    @pytest.mark.asyncio
    async def test_create_folder_other_error(self, s3, mock_boto_client):
        mock_boto_client.put_object.side_effect = client_error("AccessDenied")

        with pytest.raises(RemoteStoreError):
            await s3.create_folder("dailycraft/journal/u1")

    @pytest.mark.asyncio
    async def test_folder_exists(self, s3, mock_boto_client):
        assert await s3.folder_exists("dailycraft/journal") is True
        mock_boto_client.head_object.assert_called_once_with(
            Bucket="journal-bucket", Key="dailycraft/journal/"
        )

    @pytest.mark.asyncio
    async def test_folder_missing(self, s3, mock_boto_client):
        mock_boto_client.head_object.side_effect = client_error("404", "HeadObject")

        assert await s3.folder_exists("dailycraft/journal") is False

    @pytest.mark.asyncio
    async def test_head_access_denied_raises(self, s3, mock_boto_client):
        mock_boto_client.head_object.side_effect = client_error("403", "HeadObject")

        with pytest.raises(RemoteStoreError):
            await s3.object_exists("k")


class TestObjects:
    """Tests for object reads and writes."""

    @pytest.mark.asyncio
    async def test_put_object_returns_url(self, s3, mock_boto_client):
        url = await s3.put_object("a/log_1.json", b"{}", "application/json")

        assert url.endswith("/a/log_1.json")
        mock_boto_client.put_object.assert_called_once_with(
            Bucket="journal-bucket", Key="a/log_1.json", Body=b"{}", ContentType="application/json"
        )

    @pytest.mark.asyncio
    async def test_put_object_failure(self, s3, mock_boto_client):
        mock_boto_client.put_object.side_effect = client_error("InternalError")

        with pytest.raises(RemoteStoreError):
            await s3.put_object("k", b"x")

    @pytest.mark.asyncio
    async def test_get_object(self, s3, mock_boto_client):
        body = Mock()
        body.read.return_value = b"content"
        mock_boto_client.get_object.return_value = {"Body": body}

        assert await s3.get_object("k") == b"content"

    @pytest.mark.asyncio
    async def test_get_object_not_found(self, s3, mock_boto_client):
        mock_boto_client.get_object.side_effect = client_error("NoSuchKey", "GetObject")

        with pytest.raises(ObjectNotFoundError) as exc_info:
            await s3.get_object("missing")

        assert exc_info.value.key == "missing"

    @pytest.mark.asyncio
    async def test_open_object(self, s3, mock_boto_client):
        body = Mock()
        mock_boto_client.get_object.return_value = {
            "Body": body, "ContentType": "image/png", "ContentLength": 42
        }

        obj = await s3.open_object("k.png")

        assert obj == {"body": body, "content_type": "image/png", "content_length": 42}

    @pytest.mark.asyncio
    async def test_list_keys_excludes_folder_markers(self, s3, mock_boto_client):
        paginator = Mock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "p/"}, {"Key": "p/log_a.json"}]},
            {"Contents": [{"Key": "p/log_b.json"}]},
            {},
        ]
        mock_boto_client.get_paginator.return_value = paginator

        keys = await s3.list_keys("p/")

        assert keys == ["p/log_a.json", "p/log_b.json"]
        paginator.paginate.assert_called_once_with(
            Bucket="journal-bucket", Prefix="p/", Delimiter="/"
        )

    @pytest.mark.asyncio
    async def test_list_keys_recursive_has_no_delimiter(self, s3, mock_boto_client):
        paginator = Mock()
        paginator.paginate.return_value = []
        mock_boto_client.get_paginator.return_value = paginator

        assert await s3.list_keys("p/", recursive=True) == []
        paginator.paginate.assert_called_once_with(Bucket="journal-bucket", Prefix="p/")

    @pytest.mark.asyncio
    async def test_move_object_copies_then_deletes(self, s3, mock_boto_client):
        calls = Mock()
        calls.attach_mock(mock_boto_client.copy_object, "copy_object")
        calls.attach_mock(mock_boto_client.delete_object, "delete_object")

        await s3.move_object("a/log_1.json", "trash/a/log_1.json")

        assert [c[0] for c in calls.mock_calls] == ["copy_object", "delete_object"]
        mock_boto_client.copy_object.assert_called_once_with(
            Bucket="journal-bucket",
            Key="trash/a/log_1.json",
            CopySource={"Bucket": "journal-bucket", "Key": "a/log_1.json"}
        )

    @pytest.mark.asyncio
    async def test_move_missing_object(self, s3, mock_boto_client):
        mock_boto_client.copy_object.side_effect = client_error("NoSuchKey", "CopyObject")

        with pytest.raises(ObjectNotFoundError):
            await s3.move_object("missing", "trash/missing")

        mock_boto_client.delete_object.assert_not_called()


class TestRetry:
    """Tests for transient error handling."""

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, s3, mock_boto_client, no_sleep):
        mock_boto_client.put_object.side_effect = [
            EndpointConnectionError(endpoint_url="https://s3"),
            {},
        ]

        await s3.put_object("k", b"x")

        assert mock_boto_client.put_object.call_count == 2
        no_sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, s3, mock_boto_client, no_sleep):
        mock_boto_client.head_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")

        with pytest.raises(RemoteStoreError):
            await s3.object_exists("k")

        assert mock_boto_client.head_object.call_count == 4
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, s3, mock_boto_client, no_sleep):
        mock_boto_client.put_object.side_effect = client_error("AccessDenied")

        with pytest.raises(RemoteStoreError):
            await s3.put_object("k", b"x")

        assert mock_boto_client.put_object.call_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_move_is_not_retried(self, s3, mock_boto_client, no_sleep):
        mock_boto_client.copy_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")

        with pytest.raises(RemoteStoreError):
            await s3.move_object("a", "b")

        assert mock_boto_client.copy_object.call_count == 1


class BlockingBotoClient:
    """Stand-in boto3 client whose calls block the calling thread."""

    def __init__(self, delay=0.05):
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def _block(self):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        time.sleep(self.delay)
        with self._lock:
            self.in_flight -= 1

    def head_object(self, **kwargs):
        self._block()
        return {}

    def put_object(self, **kwargs):
        self._block()
        return {}


class TestEventLoop:
    """Tests that blocking boto3 calls do not hold the event loop."""

    @pytest.mark.asyncio
    async def test_blocking_calls_overlap(self):
        boto = BlockingBotoClient(delay=0.1)
        with patch('services.remote_store.s3_client.boto3.client', return_value=boto):
            s3 = S3Client(bucket_name="journal-bucket")

        started = time.monotonic()
        await asyncio.gather(*(s3.put_object(f"k{i}", b"x") for i in range(4)))
        elapsed = time.monotonic() - started

        assert boto.max_in_flight == 4
        assert elapsed < 0.35

    @pytest.mark.asyncio
    async def test_loop_keeps_running_during_call(self):
        boto = BlockingBotoClient(delay=0.2)
        with patch('services.remote_store.s3_client.boto3.client', return_value=boto):
            s3 = S3Client(bucket_name="journal-bucket")
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        task = asyncio.create_task(ticker())
        try:
            assert await s3.object_exists("k") is True
        finally:
            task.cancel()

        assert ticks >= 5
