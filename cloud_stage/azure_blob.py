"""
Azure blob stage providers.

- InternalAzureStorage: stage managed by the database; ephemeral SAS token
  and client-side envelope encryption
- ExternalAzureStorage: caller-owned container; static SAS token, no
  client-side encryption
"""

from __future__ import annotations

import io
import logging
from typing import Any, BinaryIO, Callable, List, Optional

from azure.core.exceptions import ResourceNotFoundError

from .clients import create_azure_client
from .envelope import create_cipher_and_metadata, open_decrypting_stream
from .errors import CredentialError
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

AzureClientFactory = Callable[..., Any]


# =============================================================================
# Transport helpers
# =============================================================================


def open_azure_upload(service: Any, info: StageInfo, blob_name: str, compress: bool) -> UploadStream:
    blob = service.get_blob_client(container=info.location, blob=blob_name)
    transform = None
    metadata = None
    if info.encrypted:
        transform, metadata = create_cipher_and_metadata(
            info.master_key, info.query_id, info.smk_id, StageType.AZURE
        )

    def commit(data: bytes) -> None:
        blob.upload_blob(data, metadata=metadata, overwrite=True)
        logger.debug("Uploaded blob %s/%s (%d bytes)", info.location, blob_name, len(data))

    return build_upload_stream(commit, transform, compress)


def open_azure_download(service: Any, info: StageInfo, blob_name: str, compress: bool) -> BinaryIO:
    blob = service.get_blob_client(container=info.location, blob=blob_name)
    downloader = blob.download_blob()
    stream: BinaryIO = io.BytesIO(downloader.readall())
    if info.encrypted:
        stream = open_decrypting_stream(
            stream, info.master_key, downloader.properties.metadata or {}, StageType.AZURE
        )
    return decompressed(stream, compress)


def delete_blob_if_exists(service: Any, container: str, blob_name: str) -> None:
    try:
        service.get_blob_client(container=container, blob=blob_name).delete_blob()
    except ResourceNotFoundError:
        logger.debug("Blob %s/%s already deleted", container, blob_name)


def list_blob_names(service: Any, container: str, prefix: str, sub_dir: str = "") -> List[str]:
    """Names of the blobs under ``prefix + sub_dir``, relative to ``prefix``."""
    container_client = service.get_container_client(container)
    names = []
    for blob in container_client.list_blobs(name_starts_with=listing_prefix(prefix, sub_dir)):
        name = strip_prefix(blob.name, prefix)
        if name and not name.endswith("/"):
            names.append(name)
    return names


# =============================================================================
# Providers
# =============================================================================


class _AzureStorage(CloudStorage):
    """Operations shared by both Azure providers."""

    def __init__(self, client_factory: AzureClientFactory = create_azure_client, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client_factory = client_factory

    def _client(self, info: StageInfo) -> Any:
        return self._client_factory(
            info.azure_account,
            info.azure_endpoint,
            info.credentials.azure_sas,
            self.proxy_info,
        )

    def _create_upload_stream(
        self,
        file_name: str,
        directory: Optional[str],
        compress: bool,
        info: StageInfo,
    ) -> UploadStream:
        blob_name = info.key_for(object_name(file_name, directory))
        return open_azure_upload(self._client(info), info, blob_name, compress)

    def _create_download_stream(self, file_name: str, compress: bool, info: StageInfo) -> BinaryIO:
        return open_azure_download(self._client(info), info, info.key_for(file_name), compress)

    def delete_file(self, file_name: str) -> None:
        info = self.stage_info(is_write=True)
        delete_blob_if_exists(self._client(info), info.location, info.key_for(file_name))

    def delete_files(self, file_names) -> None:
        info = self.stage_info(is_write=True)
        service = self._client(info)
        for name in file_names:
            delete_blob_if_exists(service, info.location, info.key_for(name))

    def file_exists(self, file_name: str) -> bool:
        info = self.stage_info(is_write=False)
        blob = self._client(info).get_blob_client(
            container=info.location, blob=info.key_for(file_name)
        )
        return blob.exists()


class InternalAzureStorage(_AzureStorage):
    """Azure-backed internal stage."""

    kind = StorageKind.INTERNAL_AZURE

    def __init__(self, session: SqlSession, stage_name: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.session = session
        self.stage_name = stage_name

    def stage_info(self, is_write: bool, file_name: str = "") -> StageInfo:
        return internal_stage_info(
            self.session, self.stage_name, StageType.AZURE, is_write, file_name
        )

    def _record_files(self, info: StageInfo, sub_dir: str) -> List[str]:
        return [f.name for f in info.files]

    def __repr__(self) -> str:
        return f"InternalAzureStorage(stage_name={self.stage_name!r})"


class ExternalAzureStorage(_AzureStorage):
    """Caller-owned Azure container used as a stage."""

    kind = StorageKind.EXTERNAL_AZURE

    def __init__(
        self,
        container_name: str,
        azure_account: str,
        azure_endpoint: str,
        azure_sas: str,
        prefix: str = "",
        **kwargs: Any,
    ) -> None:
        """
        Args:
            container_name: Container holding the stage
            azure_account: Storage account name
            azure_endpoint: Endpoint suffix, e.g. ``blob.core.windows.net``
            azure_sas: Shared access signature token
            prefix: Path of the stage inside the container
            **kwargs: client_factory and CloudStorage settings

        Raises:
            CredentialError: If the SAS token is missing
        """
        if not azure_sas:
            raise CredentialError("missing Azure SAS")
        super().__init__(**kwargs)
        self.container_name = container_name
        self.azure_account = azure_account
        self.azure_endpoint = azure_endpoint
        self.prefix = normalize_prefix(prefix)
        self._credentials = StageCredentials(azure_sas=azure_sas)

    def stage_info(self, is_write: bool, file_name: str = "") -> StageInfo:
        return StageInfo(
            stage_type=StageType.AZURE,
            location=self.container_name,
            prefix=self.prefix,
            credentials=self._credentials,
            azure_account=self.azure_account,
            azure_endpoint=self.azure_endpoint,
        )

    def _record_files(self, info: StageInfo, sub_dir: str) -> List[str]:
        return list_blob_names(self._client(info), info.location, info.prefix, sub_dir)

    def __repr__(self) -> str:
        return (
            f"ExternalAzureStorage(container_name={self.container_name!r}, "
            f"azure_account={self.azure_account!r}, prefix={self.prefix!r})"
        )
