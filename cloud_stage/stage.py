"""
Stage descriptors shared by every storage provider.

This module provides:
- StageType / StorageKind: provider tags
- SupportedFormat: staged file formats
- StageCredentials, RemoteFile, StageInfo: per-operation stage snapshot
- Helpers for prefixes, object keys and partition file names
"""

from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import FileNameParseError, UnsupportedProviderError


class StageType(Enum):
    """Cloud provider behind a stage, as reported by stage metadata."""

    S3 = "S3"
    AZURE = "AZURE"
    GCS = "GCS"
    LOCAL_FS = "LOCAL_FS"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_str(cls, s: str) -> StageType:
        """Parse from string."""
        try:
            return cls(s.upper())
        except (AttributeError, ValueError):
            raise UnsupportedProviderError(f"Unknown stage type: {s}")


class StorageKind(Enum):
    """Provider variant: deployment mode crossed with cloud provider."""

    INTERNAL_S3 = "InternalS3"
    EXTERNAL_S3 = "ExternalS3"
    INTERNAL_AZURE = "InternalAzure"
    EXTERNAL_AZURE = "ExternalAzure"

    def __str__(self) -> str:
        return self.value


class SupportedFormat(Enum):
    """File formats written to and read from a stage."""

    CSV = "csv"
    JSON = "json"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StageCredentials:
    """Provider credentials; only the fields of one provider are set."""

    aws_id: Optional[str] = None
    aws_key: Optional[str] = None
    aws_token: Optional[str] = None
    azure_sas: Optional[str] = None

    def __repr__(self) -> str:
        return "StageCredentials([REDACTED])"


@dataclass(frozen=True)
class RemoteFile:
    """A staged object and the key material ids it was written with."""

    name: str
    query_id: str = ""
    smk_id: str = ""


@dataclass
class StageInfo:
    """
    Snapshot of a stage for one operation.

    Internal stages build a fresh one per call from stage metadata (the
    credentials are ephemeral); external stages build it from static
    configuration. ``master_key`` is only set for internal stages, which
    are the ones using client-side encryption.
    """

    stage_type: StageType
    location: str  # bucket or container
    prefix: str = ""
    credentials: StageCredentials = field(default_factory=StageCredentials)
    master_key: Optional[str] = None
    query_id: str = ""
    smk_id: str = ""
    azure_account: Optional[str] = None
    azure_endpoint: Optional[str] = None
    files: List[RemoteFile] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.prefix = normalize_prefix(self.prefix)

    @property
    def encrypted(self) -> bool:
        return self.master_key is not None

    def key_for(self, file_name: str) -> str:
        """Full object key of a file relative to the stage prefix."""
        return self.prefix + file_name


# =============================================================================
# Helpers
# =============================================================================

_STAGE_LOCATION = re.compile(r"([^/]+)/?(.*)", re.DOTALL)


def normalize_prefix(path: Optional[str]) -> str:
    """Empty stays empty; anything else ends with exactly one '/'."""
    if not path:
        return ""
    return path if path.endswith("/") else path + "/"


def split_stage_location(stage_location: str) -> Tuple[str, str]:
    """
    Split ``bucket/some/path`` into ``("bucket", "some/path/")``.

    Raises:
        UnsupportedProviderError: If the location has no bucket/container part
    """
    match = _STAGE_LOCATION.fullmatch(stage_location or "")
    if match is None:
        raise UnsupportedProviderError(f"Invalid stage location: {stage_location!r}")
    return match.group(1), normalize_prefix(match.group(2))


def object_name(file_name: str, directory: Optional[str] = None) -> str:
    return f"{directory}/{file_name}" if directory else file_name


def listing_prefix(prefix: str, sub_dir: str = "") -> str:
    return prefix + normalize_prefix(sub_dir)


def strip_prefix(key: str, prefix: str) -> str:
    """
    Name of a listed object relative to the stage prefix.

    Raises:
        FileNameParseError: If ``key`` is not under ``prefix``
    """
    if not key.startswith(prefix):
        raise FileNameParseError(
            f"Object key {key!r} does not start with stage prefix {prefix!r}"
        )
    return key[len(prefix):]


def partition_file_name(index: int, fmt: SupportedFormat, compress: bool) -> str:
    """File name for one partition, e.g. ``3.csv.gz``."""
    return f"{index}.{fmt.value}{'.gz' if compress else ''}"


def random_alphanumeric(length: int = 10) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))
