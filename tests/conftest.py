"""
Pytest configuration and fixtures for cloud stage tests.

The object stores are replaced by in-memory fakes that are handed to the
providers through their ``client_factory`` argument.
"""

from __future__ import annotations

import base64
import io
import os
import secrets
from types import SimpleNamespace
from typing import Dict, List, Optional, Tuple

import pytest
from azure.core.exceptions import ResourceNotFoundError
from botocore.exceptions import ClientError

from cloud_stage import RemoteFile, StageCredentials, StageMetadata


# ============================================================================
# Fake S3
# ============================================================================


class FakePaginator:
    def __init__(self, client: FakeS3Client, page_size: int = 2) -> None:
        self._client = client
        self._page_size = page_size

    def paginate(self, Bucket: str, Prefix: str = ""):
        keys = sorted(k for (b, k) in self._client.objects if b == Bucket and k.startswith(Prefix))
        for start in range(0, len(keys), self._page_size):
            yield {"Contents": [{"Key": k} for k in keys[start:start + self._page_size]]}


class FakeS3Client:
    """Dict-backed stand-in for a boto3 S3 client."""

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], dict] = {}
        self.delete_batches: List[int] = []
        self.get_calls = 0
        self.read_failures = 0

    def put_object(self, Bucket, Key, Body, Metadata=None, ContentEncoding=None):
        self.objects[(Bucket, Key)] = {
            "Body": bytes(Body),
            "Metadata": dict(Metadata or {}),
            "ContentEncoding": ContentEncoding,
        }
        return {}

    def get_object(self, Bucket, Key):
        self.get_calls += 1
        if self.read_failures > 0:
            self.read_failures -= 1
            raise ConnectionResetError("connection reset by peer")
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": Key}}, "GetObject")
        obj = self.objects[(Bucket, Key)]
        return {"Body": io.BytesIO(obj["Body"]), "Metadata": dict(obj["Metadata"])}

    def head_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[(Bucket, Key)]["Body"])}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)
        return {}

    def delete_objects(self, Bucket, Delete):
        batch = Delete["Objects"]
        self.delete_batches.append(len(batch))
        for entry in batch:
            self.objects.pop((Bucket, entry["Key"]), None)
        return {}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self)


# ============================================================================
# Fake Azure blob service
# ============================================================================


class FakeBlobClient:
    def __init__(self, service: FakeBlobService, container: str, blob: str) -> None:
        self._service = service
        self._key = (container, blob)

    def upload_blob(self, data, metadata=None, overwrite=False):
        if not overwrite and self._key in self._service.blobs:
            raise AssertionError("blob exists")
        self._service.blobs[self._key] = {"data": bytes(data), "metadata": metadata}

    def download_blob(self):
        self._service.download_calls += 1
        if self._service.read_failures > 0:
            self._service.read_failures -= 1
            raise ConnectionResetError("connection reset by peer")
        if self._key not in self._service.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        blob = self._service.blobs[self._key]
        return SimpleNamespace(
            readall=lambda: blob["data"],
            properties=SimpleNamespace(metadata=dict(blob["metadata"] or {})),
        )

    def exists(self) -> bool:
        return self._key in self._service.blobs

    def delete_blob(self):
        if self._key not in self._service.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        del self._service.blobs[self._key]


class FakeContainerClient:
    def __init__(self, service: FakeBlobService, container: str) -> None:
        self._service = service
        self._container = container

    def list_blobs(self, name_starts_with=None):
        prefix = name_starts_with or ""
        return [
            SimpleNamespace(name=name)
            for (container, name) in sorted(self._service.blobs)
            if container == self._container and name.startswith(prefix)
        ]


class FakeBlobService:
    """Dict-backed stand-in for azure.storage.blob.BlobServiceClient."""

    def __init__(self) -> None:
        self.blobs: Dict[Tuple[str, str], dict] = {}
        self.download_calls = 0
        self.read_failures = 0

    def get_blob_client(self, container, blob):
        return FakeBlobClient(self, container, blob)

    def get_container_client(self, container):
        return FakeContainerClient(self, container)


# ============================================================================
# Fake SQL session
# ============================================================================


class FakeSqlSession:
    """Records statements and reports a fixed stage."""

    def __init__(
        self,
        stage_type: str = "S3",
        stage_location: str = "stage-bucket/stages/abc",
        master_key: Optional[str] = None,
        credentials: Optional[StageCredentials] = None,
        azure_account: Optional[str] = None,
        azure_endpoint: Optional[str] = None,
        query_id: str = "01a2b3c4-0000",
        smk_id: str = "4321",
    ) -> None:
        self.stage_type = stage_type
        self.stage_location = stage_location
        self.master_key = master_key
        self.credentials = credentials or StageCredentials()
        self.azure_account = azure_account
        self.azure_endpoint = azure_endpoint
        self.query_id = query_id
        self.smk_id = smk_id
        self.files: List[str] = []
        self.executed: List[str] = []
        self.created: List[Tuple[str, bool]] = []
        self.metadata_calls: List[Tuple[str, bool, str]] = []

    def execute(self, sql: str) -> None:
        self.executed.append(sql)

    def create_stage(self, name: str, temporary: bool = False) -> None:
        self.created.append((name, temporary))

    def get_stage_metadata(self, stage_name: str, is_write: bool, file_name: str = "") -> StageMetadata:
        self.metadata_calls.append((stage_name, is_write, file_name))
        if is_write:
            key_ids = [RemoteFile(file_name, self.query_id, self.smk_id)]
        else:
            key_ids = [RemoteFile(name, self.query_id, self.smk_id) for name in self.files]
        return StageMetadata(
            stage_type=self.stage_type,
            stage_location=self.stage_location,
            master_key=self.master_key,
            credentials=self.credentials,
            azure_account=self.azure_account,
            azure_endpoint=self.azure_endpoint,
            key_ids=key_ids,
        )


# ============================================================================
# Fixtures
# ============================================================================


def make_master_key(length: int = 32) -> str:
    return base64.b64encode(secrets.token_bytes(length)).decode("ascii")


@pytest.fixture
def master_key() -> str:
    """Base64 AES-256 stage master key."""
    return make_master_key(32)


class SleepRecorder(list):
    """Sleep replacement recording the requested delays."""

    def __call__(self, seconds: float) -> None:
        self.append(seconds)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def s3_factory(s3_client: FakeS3Client):
    """Client factory returning the shared fake and recording its arguments."""
    calls = []

    def factory(*args):
        calls.append(args)
        return s3_client

    factory.calls = calls
    return factory


@pytest.fixture
def blob_service() -> FakeBlobService:
    return FakeBlobService()


@pytest.fixture
def azure_factory(blob_service: FakeBlobService):
    calls = []

    def factory(*args):
        calls.append(args)
        return blob_service

    factory.calls = calls
    return factory


@pytest.fixture
def s3_session(master_key: str) -> FakeSqlSession:
    return FakeSqlSession(
        stage_type="S3",
        stage_location="stage-bucket/stages/abc",
        master_key=master_key,
        credentials=StageCredentials(aws_id="ASIAEXAMPLE", aws_key="secret", aws_token="token"),
    )


@pytest.fixture
def azure_session(master_key: str) -> FakeSqlSession:
    return FakeSqlSession(
        stage_type="AZURE",
        stage_location="stage-container/stages/abc",
        master_key=master_key,
        credentials=StageCredentials(azure_sas="sv=2020&sig=abc"),
        azure_account="myaccount",
        azure_endpoint="blob.core.windows.net",
    )


_ENV_KEYS = [
    "CLOUD_STAGE_ROOT_TEMPDIR",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "CLOUD_STAGE_AZURE_SAS",
    "CLOUD_STAGE_PROXY_HOST",
    "CLOUD_STAGE_PROXY_PORT",
    "CLOUD_STAGE_PROXY_USER",
    "CLOUD_STAGE_PROXY_PASSWORD",
    "CLOUD_STAGE_PROXY_PROTOCOL",
    "CLOUD_STAGE_MAX_RETRY_COUNT",
    "CLOUD_STAGE_EXPECTED_PARTITION_COUNT",
    "CLOUD_STAGE_PARALLELISM",
]


@pytest.fixture
def clean_env():
    """Remove stage settings from os.environ, restoring them afterwards."""
    saved = {key: os.environ.pop(key) for key in _ENV_KEYS if key in os.environ}
    yield
    for key in _ENV_KEYS:
        os.environ.pop(key, None)
    os.environ.update(saved)
