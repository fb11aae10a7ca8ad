"""
Storage provider contract.

This module provides:
- CloudStorage: Abstract interface implemented by the four stage providers
- StagedRecords: Lazy view of the text records held by a set of staged files
- internal_stage_info: StageInfo for an internal stage, from the SQL session

Providers hold configuration only. Per-operation state (credentials, master
key, file list) lives in a StageInfo built for each call, and the one
counter a provider owns is thread-safe.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import BinaryIO, Callable, Iterable, Iterator, List, Optional

from .clients import DEFAULT_PARALLELISM, ProxyInfo
from .errors import CredentialError, UnsupportedProviderError
from .retry import ProcessedCounter, download_with_retry
from .session import SqlSession
from .stage import (
    StageInfo,
    StageType,
    StorageKind,
    SupportedFormat,
    partition_file_name,
    random_alphanumeric,
    split_stage_location,
)
from .streams import CHUNK_SIZE, UploadStream

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY_COUNT = 10
DEFAULT_EXPECTED_PARTITION_COUNT = 1000


def iter_records(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[str]:
    """Yield newline-delimited UTF-8 records, closing ``stream`` at the end."""
    try:
        pending = b""
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                yield line.decode("utf-8")
        if pending:
            yield pending.decode("utf-8")
    finally:
        stream.close()


class RecordPartition:
    """The records of a group of files, read one file at a time."""

    def __init__(
        self,
        index: int,
        files: List[str],
        loader: Callable[[str], BinaryIO],
    ) -> None:
        self.index = index
        self.files = files
        self._loader = loader

    def __iter__(self) -> Iterator[str]:
        for name in self.files:
            yield from iter_records(self._loader(name))

    def __repr__(self) -> str:
        return f"RecordPartition(index={self.index}, files={len(self.files)})"


class StagedRecords:
    """
    Lazy sequence of the text records in a list of staged files.

    Nothing is downloaded until iteration. ``partitions()`` splits the files
    into independent groups for parallel consumers; ``collect()`` reads the
    groups on a thread pool and merges them once each one is done.
    """

    def __init__(
        self,
        files: List[str],
        fmt: SupportedFormat,
        loader: Callable[[str], BinaryIO],
        partition_count: int = DEFAULT_EXPECTED_PARTITION_COUNT,
    ) -> None:
        self.files = list(files)
        self.format = fmt
        self._loader = loader
        self._partition_count = max(partition_count, 1)

    def __iter__(self) -> Iterator[str]:
        for name in self.files:
            yield from iter_records(self._loader(name))

    def partitions(self) -> List[RecordPartition]:
        count = min(self._partition_count, len(self.files))
        return [
            RecordPartition(i, self.files[i::count], self._loader)
            for i in range(count)
        ]

    def collect(self, max_workers: Optional[int] = None) -> List[str]:
        partitions = self.partitions()
        if not partitions:
            return []
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(list, partitions))
        return [record for records in results for record in records]


class CloudStorage(ABC):
    """
    Abstract interface for stage storage providers.

    Subclasses supply stage resolution and the transport; upload, partitioned
    upload, retrying download and record download are shared here.
    """

    kind: StorageKind

    def __init__(
        self,
        max_retry_count: int = DEFAULT_MAX_RETRY_COUNT,
        expected_partition_count: int = DEFAULT_EXPECTED_PARTITION_COUNT,
        parallelism: int = DEFAULT_PARALLELISM,
        proxy_info: Optional[ProxyInfo] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retry_count = max_retry_count
        self.expected_partition_count = expected_partition_count
        self.parallelism = parallelism
        self.proxy_info = proxy_info
        self._sleep = sleep
        self._processed = ProcessedCounter()

    @property
    def processed_file_count(self) -> int:
        """Downloads completed through download_with_retry."""
        return self._processed.value

    # ------------------------------------------------------------------
    # Provider hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def stage_info(self, is_write: bool, file_name: str = "") -> StageInfo:
        """Resolve the stage for one operation."""
        ...

    @abstractmethod
    def _create_upload_stream(
        self,
        file_name: str,
        directory: Optional[str],
        compress: bool,
        info: StageInfo,
    ) -> UploadStream:
        ...

    @abstractmethod
    def _create_download_stream(
        self,
        file_name: str,
        compress: bool,
        info: StageInfo,
    ) -> BinaryIO:
        ...

    @abstractmethod
    def _record_files(self, info: StageInfo, sub_dir: str) -> List[str]:
        """Files read by download_records."""
        ...

    @abstractmethod
    def delete_file(self, file_name: str) -> None:
        ...

    @abstractmethod
    def file_exists(self, file_name: str) -> bool:
        ...

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(
        self,
        file_name: str,
        directory: Optional[str] = None,
        compress: bool = True,
    ) -> UploadStream:
        """
        Open a stream that writes ``file_name`` on close.

        Nothing reaches the object store before ``close()``; leaving a
        ``with`` block by exception discards the data.
        """
        return self._create_upload_stream(
            file_name, directory, compress, self.stage_info(is_write=True)
        )

    def upload_partitions(
        self,
        partitions: Iterable[Iterable[str]],
        fmt: SupportedFormat = SupportedFormat.CSV,
        directory: Optional[str] = None,
        compress: bool = True,
    ) -> List[str]:
        """
        Write each partition of records to its own file.

        Partition ``i`` becomes ``{directory}/{i}.{fmt}[.gz]``; a random
        directory name is used when none is given. Partitions are written
        in parallel and the returned names are in completion order.

        Returns:
            Names of the written files, relative to the stage prefix
        """
        info = self.stage_info(is_write=True)
        target = directory or random_alphanumeric(10)

        with ThreadPoolExecutor(max_workers=self.parallelism) as pool:
            futures = [
                pool.submit(self._upload_partition, index, rows, fmt, target, compress, info)
                for index, rows in enumerate(partitions)
            ]
            return [future.result() for future in as_completed(futures)]

    def _upload_partition(
        self,
        index: int,
        rows: Iterable[str],
        fmt: SupportedFormat,
        directory: str,
        compress: bool,
        info: StageInfo,
    ) -> str:
        file_name = partition_file_name(index, fmt, compress)
        with self._create_upload_stream(file_name, directory, compress, info) as stream:
            for row in rows:
                stream.write(row.encode("utf-8"))
                stream.write(b"\n")
        logger.info("upload file %s/%s to stage", directory, file_name)
        return f"{directory}/{file_name}"

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def download(self, file_name: str, compress: bool = True) -> BinaryIO:
        """Open a single staged file, decrypted and decompressed."""
        return self._create_download_stream(
            file_name, compress, self.stage_info(is_write=False, file_name=file_name)
        )

    def download_with_retry(
        self,
        file_name: str,
        compress: bool,
        info: StageInfo,
        max_retry_count: Optional[int] = None,
    ) -> BinaryIO:
        budget = self.max_retry_count if max_retry_count is None else max_retry_count
        return download_with_retry(
            lambda: self._create_download_stream(file_name, compress, info),
            file_name,
            budget,
            counter=self._processed,
            sleep=self._sleep,
        )

    def download_records(
        self,
        fmt: SupportedFormat = SupportedFormat.CSV,
        compress: bool = True,
        sub_dir: str = "",
    ) -> StagedRecords:
        """Lazy records of every file in the stage (or ``sub_dir``)."""
        info = self.stage_info(is_write=False)
        files = self._record_files(info, sub_dir)
        logger.info("Reading %d staged files from %s", len(files), self.kind)
        return StagedRecords(
            files,
            fmt,
            lambda name: self.download_with_retry(name, compress, info),
            self.expected_partition_count,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_files(self, file_names: Iterable[str]) -> None:
        for name in file_names:
            self.delete_file(name)


def internal_stage_info(
    session: SqlSession,
    stage_name: str,
    expected_type: StageType,
    is_write: bool,
    file_name: str = "",
) -> StageInfo:
    """
    StageInfo of an internal stage.

    The query id and smk id come from the first key id reported by the
    stage; the file list is only filled in for reads.

    Raises:
        UnsupportedProviderError: If the stage moved to another provider
        CredentialError: If the stage reported no usable credentials
    """
    metadata = session.get_stage_metadata(stage_name, is_write=is_write, file_name=file_name)
    stage_type = StageType.from_str(metadata.stage_type)
    if stage_type is not expected_type:
        raise UnsupportedProviderError(
            f"Stage {stage_name} is {stage_type}, expected {expected_type}"
        )

    creds = metadata.credentials
    if stage_type is StageType.S3 and not (creds.aws_id and creds.aws_key):
        raise CredentialError(f"Stage {stage_name} returned no AWS credentials")
    if stage_type is StageType.AZURE and not (
        creds.azure_sas and metadata.azure_account and metadata.azure_endpoint
    ):
        raise CredentialError(f"Stage {stage_name} returned no Azure SAS token or account")

    location, prefix = split_stage_location(metadata.stage_location)
    first = metadata.key_ids[0] if metadata.key_ids else None

    return StageInfo(
        stage_type=stage_type,
        location=location,
        prefix=prefix,
        credentials=creds,
        master_key=metadata.master_key,
        query_id=first.query_id if first else "",
        smk_id=first.smk_id if first else "",
        azure_account=metadata.azure_account,
        azure_endpoint=metadata.azure_endpoint,
        files=[] if is_write else list(metadata.key_ids),
    )
