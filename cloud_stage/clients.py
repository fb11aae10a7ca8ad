"""
Transport client factory.

Clients are built fresh for every logical operation and never cached: stage
credentials for internal stages are ephemeral, so a client bound to them is
only valid for the call that fetched them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

import boto3
from azure.storage.blob import BlobServiceClient
from botocore.config import Config as BotoConfig

logger = logging.getLogger(__name__)

DEFAULT_PARALLELISM = 10
S3_MAX_RETRIES = 6
S3_MAX_TIMEOUT_MS = 30 * 1000


@dataclass(frozen=True)
class ProxyInfo:
    """HTTP proxy applied to every transport client."""

    host: str
    port: int
    user: Optional[str] = None
    password: Optional[str] = None
    protocol: str = "http"

    def url(self) -> str:
        auth = ""
        if self.user:
            auth = quote(self.user, safe="")
            if self.password:
                auth += ":" + quote(self.password, safe="")
            auth += "@"
        return f"{self.protocol}://{auth}{self.host}:{self.port}"

    def proxies(self) -> Dict[str, str]:
        url = self.url()
        return {"http": url, "https": url}

    def __repr__(self) -> str:
        return f"ProxyInfo(host={self.host!r}, port={self.port}, protocol={self.protocol!r})"


def s3_client_config(
    parallelism: int = DEFAULT_PARALLELISM,
    proxy_info: Optional[ProxyInfo] = None,
) -> BotoConfig:
    """Connection limit, fixed retry budget and connect timeout for S3."""
    return BotoConfig(
        max_pool_connections=parallelism,
        retries={"max_attempts": S3_MAX_RETRIES, "mode": "standard"},
        connect_timeout=S3_MAX_TIMEOUT_MS / 1000,
        proxies=proxy_info.proxies() if proxy_info else None,
    )


def create_s3_client(
    aws_id: str,
    aws_key: str,
    aws_token: Optional[str] = None,
    parallelism: int = DEFAULT_PARALLELISM,
    proxy_info: Optional[ProxyInfo] = None,
) -> Any:
    """
    Build an S3 client.

    Args:
        aws_id: Access key id
        aws_key: Secret access key
        aws_token: Session token, for temporary credentials
        parallelism: Maximum pooled connections
        proxy_info: Optional proxy

    Returns:
        boto3 S3 client
    """
    kwargs: Dict[str, Any] = {
        "aws_access_key_id": aws_id,
        "aws_secret_access_key": aws_key,
        "config": s3_client_config(parallelism, proxy_info),
    }
    if aws_token:
        kwargs["aws_session_token"] = aws_token
    logger.debug("Creating S3 client (parallelism=%d, proxy=%s)", parallelism, proxy_info)
    return boto3.client("s3", **kwargs)


def azure_account_url(account: str, endpoint: str) -> str:
    return f"https://{account}.{endpoint}/"


def create_azure_client(
    account: str,
    endpoint: str,
    sas: Optional[str] = None,
    proxy_info: Optional[ProxyInfo] = None,
) -> BlobServiceClient:
    """
    Build a blob service client.

    Uses the SAS token when given, anonymous access otherwise.
    """
    kwargs: Dict[str, Any] = {
        "retry_total": S3_MAX_RETRIES,
        "connection_timeout": S3_MAX_TIMEOUT_MS / 1000,
    }
    if proxy_info:
        kwargs["proxies"] = proxy_info.proxies()
    logger.debug("Creating Azure blob client for account %s", account)
    return BlobServiceClient(
        account_url=azure_account_url(account, endpoint),
        credential=sas or None,
        **kwargs,
    )
