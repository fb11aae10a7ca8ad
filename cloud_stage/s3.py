"""
S3 stage providers.

- InternalS3Storage: stage managed by the database; ephemeral credentials
  and client-side envelope encryption
- ExternalS3Storage: caller-owned bucket; static credentials, no
  client-side encryption
"""

from __future__ import annotations

import logging
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional

from botocore.exceptions import ClientError

from .clients import create_s3_client
from .envelope import create_cipher_and_metadata, open_decrypting_stream
from .errors import CredentialError, StorageError
from .session import SqlSession
from .stage import (
    StageCredentials,
    StageInfo,
    StageType,
    StorageKind,
    listing_prefix,
    normalize_prefix,
    object_name,
    strip_prefix,
)
from .storage import CloudStorage, internal_stage_info
from .streams import UploadStream, build_upload_stream, decompressed

logger = logging.getLogger(__name__)

S3ClientFactory = Callable[..., Any]

DELETE_BATCH_SIZE = 1000  # DeleteObjects limit per request
_MISSING_CODES = ("404", "NoSuchKey", "NotFound")


# =============================================================================
# Transport helpers
# =============================================================================


def open_s3_upload(client: Any, info: StageInfo, key: str, compress: bool) -> UploadStream:
    extra: Dict[str, Any] = {}
    transform = None
    if info.encrypted:
        transform, metadata = create_cipher_and_metadata(
            info.master_key, info.query_id, info.smk_id, StageType.S3
        )
        extra["Metadata"] = metadata
    if compress:
        extra["ContentEncoding"] = "GZIP"

    def commit(data: bytes) -> None:
        client.put_object(Bucket=info.location, Key=key, Body=data, **extra)
        logger.debug("Put s3://%s/%s (%d bytes)", info.location, key, len(data))

    return build_upload_stream(commit, transform, compress)


def open_s3_download(client: Any, info: StageInfo, key: str, compress: bool) -> BinaryIO:
    response = client.get_object(Bucket=info.location, Key=key)
    stream = response["Body"]
    if info.encrypted:
        stream = open_decrypting_stream(
            stream, info.master_key, response.get("Metadata") or {}, StageType.S3
        )
    return decompressed(stream, compress)


def s3_object_exists(client: Any, bucket: str, key: str) -> bool:
    try:
        client.head_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
            return False
        raise
    return True


def delete_s3_objects(client: Any, bucket: str, keys: List[str]) -> None:
    """Batch delete, DELETE_BATCH_SIZE keys per request."""
    for start in range(0, len(keys), DELETE_BATCH_SIZE):
        batch = keys[start:start + DELETE_BATCH_SIZE]
        response = client.delete_objects(
            Bucket=bucket,
            Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
        )
        errors = response.get("Errors") or []
        if errors:
            failed = ", ".join(e.get("Key", "?") for e in errors)
            raise StorageError(f"Failed to delete objects from {bucket}: {failed}")


def list_s3_names(client: Any, bucket: str, prefix: str, sub_dir: str = "") -> List[str]:
    """Names of the objects under ``prefix + sub_dir``, relative to ``prefix``."""
    names = []
    paginator = client.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket, Prefix=listing_prefix(prefix, sub_dir)):
        for entry in page.get("Contents", []):
            name = strip_prefix(entry["Key"], prefix)
            if name and not name.endswith("/"):
                names.append(name)
    return names


# =============================================================================
# Providers
# =============================================================================


class _S3Storage(CloudStorage):
    """Operations shared by both S3 providers."""

    def __init__(self, client_factory: S3ClientFactory = create_s3_client, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client_factory = client_factory

    def _client(self, info: StageInfo) -> Any:
        creds = info.credentials
        return self._client_factory(
            creds.aws_id,
            creds.aws_key,
            creds.aws_token,
            self.parallelism,
            self.proxy_info,
        )

    def _create_upload_stream(
        self,
        file_name: str,
        directory: Optional[str],
        compress: bool,
        info: StageInfo,
    ) -> UploadStream:
        key = info.key_for(object_name(file_name, directory))
        return open_s3_upload(self._client(info), info, key, compress)

    def _create_download_stream(self, file_name: str, compress: bool, info: StageInfo) -> BinaryIO:
        return open_s3_download(self._client(info), info, info.key_for(file_name), compress)

    def delete_file(self, file_name: str) -> None:
        info = self.stage_info(is_write=True)
        self._client(info).delete_object(Bucket=info.location, Key=info.key_for(file_name))

    def delete_files(self, file_names: Iterable[str]) -> None:
        info = self.stage_info(is_write=True)
        keys = [info.key_for(name) for name in file_names]
        if keys:
            delete_s3_objects(self._client(info), info.location, keys)

    def file_exists(self, file_name: str) -> bool:
        info = self.stage_info(is_write=False)
        return s3_object_exists(self._client(info), info.location, info.key_for(file_name))


class InternalS3Storage(_S3Storage):
    """S3-backed internal stage."""

    kind = StorageKind.INTERNAL_S3

    def __init__(self, session: SqlSession, stage_name: str, **kwargs: Any) -> None:
        """
        Args:
            session: SQL session that owns the stage
            stage_name: Stage to read and write
            **kwargs: client_factory and CloudStorage settings
        """
        super().__init__(**kwargs)
        self.session = session
        self.stage_name = stage_name

    def stage_info(self, is_write: bool, file_name: str = "") -> StageInfo:
        return internal_stage_info(
            self.session, self.stage_name, StageType.S3, is_write, file_name
        )

    def _record_files(self, info: StageInfo, sub_dir: str) -> List[str]:
        return [f.name for f in info.files]

    def __repr__(self) -> str:
        return f"InternalS3Storage(stage_name={self.stage_name!r})"


class ExternalS3Storage(_S3Storage):
    """Caller-owned S3 bucket used as a stage."""

    kind = StorageKind.EXTERNAL_S3

    def __init__(
        self,
        bucket_name: str,
        aws_id: str,
        aws_key: str,
        aws_token: Optional[str] = None,
        prefix: str = "",
        **kwargs: Any,
    ) -> None:
        """
        Args:
            bucket_name: Bucket holding the stage
            aws_id: Access key id
            aws_key: Secret access key
            aws_token: Optional session token
            prefix: Path of the stage inside the bucket
            **kwargs: client_factory and CloudStorage settings

        Raises:
            CredentialError: If the access key id or secret is missing
        """
        if not aws_id:
            raise CredentialError("missing aws access key")
        if not aws_key:
            raise CredentialError("missing aws secret key")
        super().__init__(**kwargs)
        self.bucket_name = bucket_name
        self.prefix = normalize_prefix(prefix)
        self._credentials = StageCredentials(aws_id=aws_id, aws_key=aws_key, aws_token=aws_token)

    def stage_info(self, is_write: bool, file_name: str = "") -> StageInfo:
        return StageInfo(
            stage_type=StageType.S3,
            location=self.bucket_name,
            prefix=self.prefix,
            credentials=self._credentials,
        )

    def _record_files(self, info: StageInfo, sub_dir: str) -> List[str]:
        return list_s3_names(self._client(info), info.location, info.prefix, sub_dir)

    def __repr__(self) -> str:
        return f"ExternalS3Storage(bucket_name={self.bucket_name!r}, prefix={self.prefix!r})"
