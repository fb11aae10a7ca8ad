"""Tests for stage descriptors and key helpers."""

from __future__ import annotations

import string

import pytest

from cloud_stage.errors import FileNameParseError, UnsupportedProviderError
from cloud_stage.stage import (
    StageCredentials,
    StageInfo,
    StageType,
    SupportedFormat,
    listing_prefix,
    normalize_prefix,
    object_name,
    partition_file_name,
    random_alphanumeric,
    split_stage_location,
    strip_prefix,
)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("", ""),
        (None, ""),
        ("a", "a/"),
        ("a/", "a/"),
        ("a/b", "a/b/"),
    ],
)
def test_normalize_prefix(path, expected) -> None:
    assert normalize_prefix(path) == expected


@pytest.mark.parametrize(
    "location, expected",
    [
        ("bucket", ("bucket", "")),
        ("bucket/", ("bucket", "")),
        ("bucket/stages/abc", ("bucket", "stages/abc/")),
        ("bucket/stages/abc/", ("bucket", "stages/abc/")),
    ],
)
def test_split_stage_location(location, expected) -> None:
    assert split_stage_location(location) == expected


def test_split_stage_location_without_bucket() -> None:
    with pytest.raises(UnsupportedProviderError):
        split_stage_location("/path")


class TestStageType:
    def test_from_str_is_case_insensitive(self) -> None:
        assert StageType.from_str("s3") is StageType.S3
        assert StageType.from_str("Azure") is StageType.AZURE
        assert StageType.from_str("GCS") is StageType.GCS

    def test_unknown(self) -> None:
        with pytest.raises(UnsupportedProviderError):
            StageType.from_str("ftp")


class TestStageInfo:
    def test_prefix_is_normalized(self) -> None:
        info = StageInfo(stage_type=StageType.S3, location="b", prefix="x/y")
        assert info.prefix == "x/y/"
        assert info.key_for("f.csv") == "x/y/f.csv"

    def test_encrypted_only_with_master_key(self) -> None:
        assert not StageInfo(stage_type=StageType.S3, location="b").encrypted
        assert StageInfo(stage_type=StageType.S3, location="b", master_key="k").encrypted

    def test_credentials_are_redacted(self) -> None:
        creds = StageCredentials(aws_id="AKIA", aws_key="very-secret")
        assert "very-secret" not in repr(creds)
        info = StageInfo(stage_type=StageType.S3, location="b", credentials=creds)
        assert "very-secret" not in repr(info)


@pytest.mark.parametrize(
    "index, fmt, compress, expected",
    [
        (0, SupportedFormat.CSV, True, "0.csv.gz"),
        (3, SupportedFormat.CSV, False, "3.csv"),
        (12, SupportedFormat.JSON, True, "12.json.gz"),
        (1, SupportedFormat.JSON, False, "1.json"),
    ],
)
def test_partition_file_name(index, fmt, compress, expected) -> None:
    assert partition_file_name(index, fmt, compress) == expected


def test_object_name() -> None:
    assert object_name("0.csv", "dir") == "dir/0.csv"
    assert object_name("0.csv") == "0.csv"


def test_listing_prefix() -> None:
    assert listing_prefix("stage/", "") == "stage/"
    assert listing_prefix("stage/", "sub") == "stage/sub/"
    assert listing_prefix("", "sub/") == "sub/"


def test_strip_prefix() -> None:
    assert strip_prefix("stage/dir/0.csv", "stage/") == "dir/0.csv"
    with pytest.raises(FileNameParseError):
        strip_prefix("other/0.csv", "stage/")


def test_random_alphanumeric() -> None:
    value = random_alphanumeric(10)
    assert len(value) == 10
    assert set(value) <= set(string.ascii_letters + string.digits)
    assert random_alphanumeric(10) != value
