"""
SQL session interface consumed by this package.

The session creates stages, runs DDL and reports where an internal stage
lives together with its ephemeral credentials and master key. This package
never talks to the database itself; callers pass an object implementing
SqlSession.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from .stage import RemoteFile, StageCredentials


@dataclass
class StageMetadata:
    """What the database reports about an internal stage for one operation."""

    stage_type: str  # "S3", "AZURE", ...
    stage_location: str  # "<bucket-or-container>/<path>"
    master_key: str
    credentials: StageCredentials = field(default_factory=StageCredentials)
    azure_account: Optional[str] = None
    azure_endpoint: Optional[str] = None
    key_ids: List[RemoteFile] = field(default_factory=list)


class SqlSession(Protocol):
    """Narrow view of a database session."""

    def execute(self, sql: str) -> Any:
        """Run a statement synchronously."""
        ...

    def create_stage(self, name: str, temporary: bool = False) -> None:
        """Create (or replace) an internal stage."""
        ...

    def get_stage_metadata(
        self,
        stage_name: str,
        is_write: bool,
        file_name: str = "",
    ) -> StageMetadata:
        """Location, credentials and key ids of an internal stage."""
        ...


def _stage_ddl(stage_name: str, url: str, credentials: str, temporary: bool) -> str:
    kind = "temporary stage" if temporary else "stage"
    return (
        f"create or replace {kind} {stage_name}\n"
        f"url = '{url}'\n"
        f"credentials =\n"
        f"({credentials})"
    )


def s3_stage_ddl(
    stage_name: str,
    bucket: str,
    prefix: str,
    aws_id: str,
    aws_key: str,
    temporary: bool = True,
) -> str:
    return _stage_ddl(
        stage_name,
        f"s3://{bucket}/{prefix}",
        f"aws_key_id='{aws_id}' aws_secret_key='{aws_key}'",
        temporary,
    )


def azure_stage_ddl(
    stage_name: str,
    container: str,
    account: str,
    endpoint: str,
    path: str,
    sas: str,
    temporary: bool = True,
) -> str:
    return _stage_ddl(
        stage_name,
        f"azure://{account}.{endpoint}/{container}/{path}",
        f"azure_sas_token='{sas}'",
        temporary,
    )
