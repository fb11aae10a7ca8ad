"""
Stage location resolution.

parse_location() maps the configured root URL onto one of four outcomes:

- ``wasb[s]://<container>@<account>.<endpoint>/<path>``  -> ExternalAzureLocation
- ``s3a://<bucket>/<path>`` or ``s3n://<bucket>/<path>`` -> ExternalS3Location
- an ``s3``/``s3a``/``s3n``/``wasb``/``wasbs`` URL that fits neither
  grammar -> InvalidLocation
- anything else, including no URL -> InternalStage

create_storage_client() turns the outcome into a provider, creating the
stage in the database on the way.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from .azure_blob import ExternalAzureStorage, InternalAzureStorage
from .config import StorageParameters
from .errors import ConfigError, CredentialError, UnsupportedProviderError
from .s3 import ExternalS3Storage, InternalS3Storage
from .session import SqlSession, azure_stage_ddl, s3_stage_ddl
from .stage import StageType, random_alphanumeric
from .storage import CloudStorage

logger = logging.getLogger(__name__)

DEFAULT_STAGE_PREFIX = "tmp_unload_stage_"

_AZURE_URL = re.compile(r"wasbs?://([^@]+)@([^.]+)\.([^/]+)/(.*)", re.DOTALL)
_S3_URL = re.compile(r"s3[an]://([^/]+)/(.*)", re.DOTALL)
_EXTERNAL_SCHEME = re.compile(r"(s3[an]?|wasbs?)://", re.IGNORECASE)


@dataclass(frozen=True)
class InternalStage:
    pass


@dataclass(frozen=True)
class ExternalS3Location:
    bucket: str
    path: str


@dataclass(frozen=True)
class ExternalAzureLocation:
    container: str
    account: str
    endpoint: str
    path: str


@dataclass(frozen=True)
class InvalidLocation:
    url: str
    reason: str


Location = Union[InternalStage, ExternalS3Location, ExternalAzureLocation, InvalidLocation]


def parse_location(url: Optional[str]) -> Location:
    if not url:
        return InternalStage()

    match = _AZURE_URL.fullmatch(url)
    if match:
        container, account, endpoint, path = match.groups()
        return ExternalAzureLocation(container, account, endpoint, path)

    match = _S3_URL.fullmatch(url)
    if match:
        bucket, path = match.groups()
        return ExternalS3Location(bucket, path)

    if _EXTERNAL_SCHEME.match(url):
        return InvalidLocation(
            url,
            "expected s3a://<bucket>/<path>, s3n://<bucket>/<path> or "
            "wasb[s]://<container>@<account>.<endpoint>/<path>",
        )
    return InternalStage()


def create_storage_client_from_stage(
    params: StorageParameters,
    session: SqlSession,
    stage_name: str,
    temporary: bool = False,
    **provider_kwargs: Any,
) -> CloudStorage:
    """
    Create an internal stage and the provider matching its cloud.

    Raises:
        UnsupportedProviderError: If the stage is neither on S3 nor on Azure
    """
    session.create_stage(stage_name, temporary=temporary)
    metadata = session.get_stage_metadata(stage_name, is_write=False)
    stage_type = StageType.from_str(metadata.stage_type)
    settings = {**params.storage_settings(), **provider_kwargs}

    if stage_type is StageType.S3:
        return InternalS3Storage(session, stage_name, **settings)
    if stage_type is StageType.AZURE:
        return InternalAzureStorage(session, stage_name, **settings)
    raise UnsupportedProviderError(
        f"Only support s3 or Azure stage, stage type: {stage_type}"
    )


def create_storage_client(
    params: StorageParameters,
    session: SqlSession,
    temp_stage: bool = True,
    stage: Optional[str] = None,
    **provider_kwargs: Any,
) -> Tuple[CloudStorage, str]:
    """
    Resolve ``params.root_temp_dir`` to a storage provider.

    External locations are checked for credentials before anything is sent
    to the database.

    Args:
        params: Storage parameters
        session: SQL session used to create the stage
        temp_stage: Create a temporary stage
        stage: Stage name; random when omitted
        **provider_kwargs: Extra provider arguments (client_factory, sleep)

    Returns:
        Tuple of (storage provider, stage name)

    Raises:
        CredentialError: If an external location lacks credentials
        ConfigError: If the URL looks external but cannot be parsed
        UnsupportedProviderError: If an internal stage is on another cloud
    """
    stage_name = stage or DEFAULT_STAGE_PREFIX + random_alphanumeric(10)
    location = parse_location(params.root_temp_dir)
    settings = {**params.storage_settings(), **provider_kwargs}

    if isinstance(location, ExternalAzureLocation):
        if not params.azure_sas:
            raise CredentialError("missing Azure SAS")
        session.execute(
            azure_stage_ddl(
                stage_name,
                location.container,
                location.account,
                location.endpoint,
                location.path,
                params.azure_sas,
                temporary=temp_stage,
            )
        )
        logger.info("Created external Azure stage %s", stage_name)
        storage: CloudStorage = ExternalAzureStorage(
            container_name=location.container,
            azure_account=location.account,
            azure_endpoint=location.endpoint,
            azure_sas=params.azure_sas,
            prefix=location.path,
            **settings,
        )
        return storage, stage_name

    if isinstance(location, ExternalS3Location):
        if not params.aws_access_key:
            raise CredentialError("missing aws access key")
        if not params.aws_secret_key:
            raise CredentialError("missing aws secret key")
        session.execute(
            s3_stage_ddl(
                stage_name,
                location.bucket,
                location.path,
                params.aws_access_key,
                params.aws_secret_key,
                temporary=temp_stage,
            )
        )
        logger.info("Created external S3 stage %s", stage_name)
        storage = ExternalS3Storage(
            bucket_name=location.bucket,
            aws_id=params.aws_access_key,
            aws_key=params.aws_secret_key,
            prefix=location.path,
            **settings,
        )
        return storage, stage_name

    if isinstance(location, InvalidLocation):
        raise ConfigError(f"Invalid stage URL {location.url!r}: {location.reason}")

    logger.info("Using internal stage %s", stage_name)
    return (
        create_storage_client_from_stage(
            params, session, stage_name, temporary=temp_stage, **provider_kwargs
        ),
        stage_name,
    )
