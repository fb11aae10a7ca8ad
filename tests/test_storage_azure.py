"""Tests for the Azure blob providers against an in-memory blob service."""

from __future__ import annotations

import gzip
import json

import pytest

from cloud_stage import (
    CredentialError,
    ExternalAzureStorage,
    InternalAzureStorage,
    StorageKind,
    UnsupportedProviderError,
)
from cloud_stage.envelope import AZ_ENCRYPTIONDATA, AZ_MATDESC

CONTAINER = "stage-container"


@pytest.fixture
def external(azure_factory, no_sleep) -> ExternalAzureStorage:
    return ExternalAzureStorage(
        container_name=CONTAINER,
        azure_account="myaccount",
        azure_endpoint="blob.core.windows.net",
        azure_sas="sv=2020&sig=abc",
        prefix="unload",
        client_factory=azure_factory,
        sleep=no_sleep,
        max_retry_count=2,
    )


@pytest.fixture
def internal(azure_session, azure_factory, no_sleep) -> InternalAzureStorage:
    return InternalAzureStorage(
        azure_session,
        "tmp_stage",
        client_factory=azure_factory,
        sleep=no_sleep,
        max_retry_count=2,
    )


class TestExternalAzureStorage:
    def test_kind(self, external) -> None:
        assert external.kind is StorageKind.EXTERNAL_AZURE

    def test_upload_download(self, external, blob_service) -> None:
        with external.upload("0.csv.gz", directory="d") as stream:
            stream.write(b"x,1\n")

        stored = blob_service.blobs[(CONTAINER, "unload/d/0.csv.gz")]
        assert stored["metadata"] is None
        assert gzip.decompress(stored["data"]) == b"x,1\n"
        assert external.download("d/0.csv.gz").read() == b"x,1\n"

    def test_client_arguments(self, external, azure_factory) -> None:
        external.file_exists("f")
        assert azure_factory.calls[-1] == (
            "myaccount",
            "blob.core.windows.net",
            "sv=2020&sig=abc",
            None,
        )

    def test_failed_upload_writes_nothing(self, external, blob_service) -> None:
        with pytest.raises(ValueError):
            with external.upload("0.csv.gz") as stream:
                stream.write(b"partial")
                raise ValueError("bad record")

        assert blob_service.blobs == {}

    def test_exists_and_delete(self, external) -> None:
        with external.upload("f", compress=False) as stream:
            stream.write(b"1")

        assert external.file_exists("f")
        external.delete_file("f")
        assert not external.file_exists("f")
        # already gone
        external.delete_file("f")
        external.delete_files(["f", "g"])

    def test_download_records_with_sub_dir(self, external) -> None:
        external.upload_partitions([["a"], ["b"]], directory="keep")
        external.upload_partitions([["z"]], directory="skip")

        records = external.download_records(sub_dir="keep")

        assert records.files == ["keep/0.csv.gz", "keep/1.csv.gz"]
        assert records.collect() == ["a", "b"]

    def test_download_retries(self, external, blob_service, no_sleep) -> None:
        with external.upload("f", compress=False) as stream:
            stream.write(b"ok")
        blob_service.read_failures = 1

        info = external.stage_info(is_write=False)
        assert external.download_with_retry("f", False, info).read() == b"ok"
        assert no_sleep == [1.0]

    def test_missing_sas(self, azure_factory) -> None:
        with pytest.raises(CredentialError):
            ExternalAzureStorage(
                CONTAINER, "myaccount", "blob.core.windows.net", "", client_factory=azure_factory
            )


class TestInternalAzureStorage:
    def test_kind(self, internal) -> None:
        assert internal.kind is StorageKind.INTERNAL_AZURE

    def test_upload_is_encrypted(self, internal, blob_service) -> None:
        with internal.upload("0.csv.gz", directory="d") as stream:
            stream.write(b"secret\n")

        stored = blob_service.blobs[(CONTAINER, "stages/abc/d/0.csv.gz")]
        assert set(stored["metadata"]) == {AZ_MATDESC, AZ_ENCRYPTIONDATA}
        document = json.loads(stored["metadata"][AZ_ENCRYPTIONDATA])
        assert document["EncryptionMode"] == "FullBlob"
        assert document["WrappedContentKey"]["KeyId"] == "symmKey1"
        assert json.loads(stored["metadata"][AZ_MATDESC])["smkId"] == "4321"

    def test_roundtrip(self, internal) -> None:
        with internal.upload("f.csv", compress=False) as stream:
            stream.write(b"line1\nline2\n")

        assert internal.download("f.csv", compress=False).read() == b"line1\nline2\n"

    def test_download_records_uses_stage_files(self, internal, azure_session) -> None:
        names = internal.upload_partitions([["r1", "r2"]], directory="q")
        azure_session.files = names

        assert list(internal.download_records()) == ["r1", "r2"]

    def test_client_uses_stage_account(self, internal, azure_factory) -> None:
        internal.file_exists("f")
        assert azure_factory.calls[-1] == (
            "myaccount",
            "blob.core.windows.net",
            "sv=2020&sig=abc",
            None,
        )

    def test_stage_on_other_cloud(self, internal, azure_session) -> None:
        azure_session.stage_type = "S3"
        with pytest.raises(UnsupportedProviderError):
            internal.file_exists("f")
