"""
Cloud Stage

Client-side encrypted staging of bulk data files in S3 or Azure blob storage.

Overview
--------
A stage is an intermediate location used to move bulk data between a
parallel compute engine and the database:

- **Internal stages** are managed by the database. Every object is encrypted
  on the client with a fresh data key wrapped under the stage master key.
- **External stages** live in a caller-owned bucket or container and use
  static credentials, without client-side encryption.

Quick Start
-----------
```python
from cloud_stage import StorageParameters, create_storage_client

params = StorageParameters.from_env()
storage, stage_name = create_storage_client(params, session)

files = storage.upload_partitions([["a,1", "b,2"], ["c,3"]])
for record in storage.download_records():
    print(record)
```

Key Features
------------
- **Envelope encryption**: AES-CBC data keys wrapped with AES-ECB under the
  stage master key, stored as S3 or Azure object metadata
- **Four providers**: internal/external crossed with S3/Azure behind one
  interface
- **Resilient downloads**: fully materialized reads with linear backoff
- **Commit on close**: an upload stream writes its object only when closed

Modules
-------
- `crypto`: AES primitives and key wrapping
- `envelope`: Envelope codec and provider metadata
- `stage`: Stage descriptors and key helpers
- `session`: SQL session interface and stage DDL
- `clients`: boto3 and Azure blob client factory
- `streams`: Upload and download stream layers
- `retry`: Retry combinator and resilient download
- `storage`: Provider interface and staged records
- `s3`, `azure_blob`: Providers
- `location`: Stage URL resolution
- `config`: Storage parameters
- `errors`: Exception classes
"""

import logging

__version__ = "0.1.0"

# ============================================================================
# Crypto Exports
# ============================================================================

from .crypto import (
    AES_BLOCK_SIZE,
    VALID_KEY_SIZES,
    AesCbcCipher,
    AesKeyWrap,
    SecureKey,
    generate_random_bytes,
)

# ============================================================================
# Envelope Exports
# ============================================================================

from .envelope import (
    FileEnvelope,
    MaterialDescriptor,
    create_cipher_and_metadata,
    create_envelope,
    extract_key_and_iv,
    open_decrypting_stream,
)

# ============================================================================
# Error Exports
# ============================================================================

from .errors import (
    CloudStageError,
    ConfigError,
    CredentialError,
    CryptoError,
    DownloadRetryExhaustedError,
    FileNameParseError,
    IncompleteMetadataError,
    SerializationError,
    StorageError,
    UnknownDownloadFailureError,
    UnsupportedProviderError,
)

# ============================================================================
# Stage Exports
# ============================================================================

from .stage import (
    RemoteFile,
    StageCredentials,
    StageInfo,
    StageType,
    StorageKind,
    SupportedFormat,
)

from .session import (
    SqlSession,
    StageMetadata,
)

# ============================================================================
# Provider Exports
# ============================================================================

from .clients import (
    ProxyInfo,
    create_azure_client,
    create_s3_client,
)

from .retry import (
    ProcessedCounter,
    download_with_retry,
    retry_call,
)

from .storage import (
    CloudStorage,
    StagedRecords,
)

from .s3 import (
    ExternalS3Storage,
    InternalS3Storage,
)

from .azure_blob import (
    ExternalAzureStorage,
    InternalAzureStorage,
)

# ============================================================================
# Resolution Exports (Primary API)
# ============================================================================

from .config import StorageParameters

from .location import (
    ExternalAzureLocation,
    ExternalS3Location,
    InternalStage,
    InvalidLocation,
    create_storage_client,
    create_storage_client_from_stage,
    parse_location,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

# ============================================================================
# Public API
# ============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AES_BLOCK_SIZE",
    "VALID_KEY_SIZES",
    "AesCbcCipher",
    "AesKeyWrap",
    "SecureKey",
    "generate_random_bytes",
    # Envelope
    "FileEnvelope",
    "MaterialDescriptor",
    "create_envelope",
    "create_cipher_and_metadata",
    "extract_key_and_iv",
    "open_decrypting_stream",
    # Errors
    "CloudStageError",
    "CryptoError",
    "SerializationError",
    "ConfigError",
    "CredentialError",
    "UnsupportedProviderError",
    "IncompleteMetadataError",
    "FileNameParseError",
    "StorageError",
    "DownloadRetryExhaustedError",
    "UnknownDownloadFailureError",
    # Stage
    "StageType",
    "StorageKind",
    "SupportedFormat",
    "StageCredentials",
    "StageInfo",
    "RemoteFile",
    "SqlSession",
    "StageMetadata",
    # Providers
    "ProxyInfo",
    "create_s3_client",
    "create_azure_client",
    "ProcessedCounter",
    "retry_call",
    "download_with_retry",
    "CloudStorage",
    "StagedRecords",
    "InternalS3Storage",
    "ExternalS3Storage",
    "InternalAzureStorage",
    "ExternalAzureStorage",
    # Resolution (Primary API)
    "StorageParameters",
    "InternalStage",
    "ExternalS3Location",
    "ExternalAzureLocation",
    "InvalidLocation",
    "parse_location",
    "create_storage_client",
    "create_storage_client_from_stage",
]
