"""
Stage storage parameters.

Parameters can be built directly or read from the environment. from_env()
loads a ``.env`` file first (python-dotenv), so local setups can keep
credentials out of the shell.

Environment variables:
    CLOUD_STAGE_ROOT_TEMPDIR           s3a://bucket/path, wasbs://container@account.endpoint/path,
                                       or empty for an internal stage
    AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY
    CLOUD_STAGE_AZURE_SAS
    CLOUD_STAGE_PROXY_HOST / _PORT / _USER / _PASSWORD / _PROTOCOL
    CLOUD_STAGE_MAX_RETRY_COUNT        default 10
    CLOUD_STAGE_EXPECTED_PARTITION_COUNT  default 1000
    CLOUD_STAGE_PARALLELISM            default 10
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union

from dotenv import load_dotenv

from .clients import DEFAULT_PARALLELISM, ProxyInfo
from .errors import ConfigError
from .storage import DEFAULT_EXPECTED_PARTITION_COUNT, DEFAULT_MAX_RETRY_COUNT

ENV_PREFIX = "CLOUD_STAGE_"


def _int_value(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass
class StorageParameters:
    """Settings needed to pick and build a stage storage provider."""

    root_temp_dir: str = ""
    aws_access_key: Optional[str] = None
    aws_secret_key: Optional[str] = None
    azure_sas: Optional[str] = None
    proxy_info: Optional[ProxyInfo] = None
    max_retry_count: int = DEFAULT_MAX_RETRY_COUNT
    expected_partition_count: int = DEFAULT_EXPECTED_PARTITION_COUNT
    parallelism: int = DEFAULT_PARALLELISM

    def __repr__(self) -> str:
        return (
            f"StorageParameters(root_temp_dir={self.root_temp_dir!r}, "
            f"max_retry_count={self.max_retry_count}, "
            f"expected_partition_count={self.expected_partition_count}, "
            f"parallelism={self.parallelism}, proxy_info={self.proxy_info!r})"
        )

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> StorageParameters:
        """
        Read parameters from the environment.

        Args:
            env_file: .env file to load; defaults to python-dotenv's search
            environ: Mapping to read instead of os.environ (no .env loading)

        Raises:
            ConfigError: If a numeric setting is malformed or the proxy
                port is missing
        """
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ
        env = environ

        proxy_info = None
        proxy_host = env.get(ENV_PREFIX + "PROXY_HOST")
        if proxy_host:
            if not env.get(ENV_PREFIX + "PROXY_PORT"):
                raise ConfigError(f"{ENV_PREFIX}PROXY_PORT is required with a proxy host")
            proxy_info = ProxyInfo(
                host=proxy_host,
                port=_int_value(env, ENV_PREFIX + "PROXY_PORT", 0, 1),
                user=env.get(ENV_PREFIX + "PROXY_USER") or None,
                password=env.get(ENV_PREFIX + "PROXY_PASSWORD") or None,
                protocol=env.get(ENV_PREFIX + "PROXY_PROTOCOL") or "http",
            )

        return cls(
            root_temp_dir=env.get(ENV_PREFIX + "ROOT_TEMPDIR", ""),
            aws_access_key=env.get("AWS_ACCESS_KEY_ID") or None,
            aws_secret_key=env.get("AWS_SECRET_ACCESS_KEY") or None,
            azure_sas=env.get(ENV_PREFIX + "AZURE_SAS") or None,
            proxy_info=proxy_info,
            max_retry_count=_int_value(
                env, ENV_PREFIX + "MAX_RETRY_COUNT", DEFAULT_MAX_RETRY_COUNT, 0
            ),
            expected_partition_count=_int_value(
                env, ENV_PREFIX + "EXPECTED_PARTITION_COUNT", DEFAULT_EXPECTED_PARTITION_COUNT, 1
            ),
            parallelism=_int_value(env, ENV_PREFIX + "PARALLELISM", DEFAULT_PARALLELISM, 1),
        )

    def storage_settings(self) -> dict:
        """Keyword arguments shared by every provider constructor."""
        return {
            "max_retry_count": self.max_retry_count,
            "expected_partition_count": self.expected_partition_count,
            "parallelism": self.parallelism,
            "proxy_info": self.proxy_info,
        }
