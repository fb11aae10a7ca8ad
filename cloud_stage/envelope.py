"""
Envelope codec for staged objects.

Every uploaded object gets a fresh data key and IV. The data key encrypts the
object (AES/CBC/PKCS7) and is itself wrapped under the stage master key
(AES/ECB/PKCS7). The wrapped key, the IV and a material descriptor travel with
the object as provider metadata:

- S3: user metadata ``x-amz-matdesc``, ``x-amz-key``, ``x-amz-iv``
- Azure: ``matdesc`` plus an ``encryptiondata`` JSON document

Both layouts are read by other clients of the same stages, so field names and
nesting must not change.
"""

from __future__ import annotations

import base64
import binascii
import io
import json
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, Mapping, Optional, Tuple

import cryptography

from .crypto import (
    AES_BLOCK_SIZE,
    AesCbcCipher,
    AesKeyWrap,
    CipherTransform,
    SecureKey,
    generate_random_bytes,
)
from .errors import (
    CryptoError,
    IncompleteMetadataError,
    SerializationError,
    UnsupportedProviderError,
)
from .stage import StageType
from .streams import DecryptingReader

# S3 user metadata keys
AMZ_MATDESC = "x-amz-matdesc"
AMZ_KEY = "x-amz-key"
AMZ_IV = "x-amz-iv"

# Azure metadata keys and encryptiondata fields
AZ_MATDESC = "matdesc"
AZ_ENCRYPTIONDATA = "encryptiondata"
AZ_IV = "ContentEncryptionIV"
AZ_KEY_WRAP = "WrappedContentKey"
AZ_KEY = "EncryptedKey"

ENCRYPTION_LIBRARY = f"Python cryptography {cryptography.__version__}"


@dataclass(frozen=True)
class MaterialDescriptor:
    """Identifies the master key version and key size behind a wrapped key."""

    smk_id: int
    query_id: str
    key_size: int  # bits

    def to_json(self) -> str:
        return json.dumps(
            {
                "queryId": self.query_id,
                "smkId": str(self.smk_id),
                "keySize": str(self.key_size),
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> MaterialDescriptor:
        try:
            data = json.loads(json_str)
            return cls(
                smk_id=int(data["smkId"]),
                query_id=data["queryId"],
                key_size=int(data.get("keySize", 0)),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise SerializationError(f"Failed to parse material descriptor: {e}")

    def __str__(self) -> str:
        return self.to_json()


@dataclass
class FileEnvelope:
    """Per-object key material. Never persisted except as metadata."""

    data_key: SecureKey
    iv: bytes
    wrapped_key: bytes
    material_descriptor: MaterialDescriptor

    @property
    def wrapped_key_base64(self) -> str:
        return base64.b64encode(self.wrapped_key).decode("ascii")

    @property
    def iv_base64(self) -> str:
        return base64.b64encode(self.iv).decode("ascii")

    def encryptor(self) -> CipherTransform:
        """Fresh encrypting transform for the object body."""
        return AesCbcCipher.encryptor(self.data_key, self.iv)

    def s3_metadata(self) -> Dict[str, str]:
        return {
            AMZ_MATDESC: self.material_descriptor.to_json(),
            AMZ_KEY: self.wrapped_key_base64,
            AMZ_IV: self.iv_base64,
        }

    def azure_metadata(self) -> Dict[str, str]:
        return {
            AZ_MATDESC: self.material_descriptor.to_json(),
            AZ_ENCRYPTIONDATA: build_encryption_data(self.wrapped_key_base64, self.iv_base64),
        }

    def metadata_for(self, stage_type: StageType) -> Dict[str, str]:
        if stage_type is StageType.S3:
            return self.s3_metadata()
        if stage_type is StageType.AZURE:
            return self.azure_metadata()
        raise UnsupportedProviderError(
            f"Only support s3 or azure stage. Stage Type: {stage_type}"
        )


def create_envelope(master_key: str, query_id: str, smk_id: str) -> FileEnvelope:
    """
    Generate key material for one object.

    Args:
        master_key: Base64 stage master key (16, 24 or 32 bytes decoded)
        query_id: Query id recorded in the material descriptor
        smk_id: Stage master key id, must be an integer string

    Raises:
        CryptoError: If the master key is invalid
        SerializationError: If smk_id is not an integer
    """
    master = SecureKey.from_base64(master_key)
    try:
        smk = int(smk_id)
    except (TypeError, ValueError):
        raise SerializationError(f"Invalid smkId: {smk_id!r}")

    iv = generate_random_bytes(AES_BLOCK_SIZE)
    data_key = SecureKey.generate(len(master))
    wrapped = AesKeyWrap.wrap(master, data_key)

    return FileEnvelope(
        data_key=data_key,
        iv=iv,
        wrapped_key=wrapped,
        material_descriptor=MaterialDescriptor(
            smk_id=smk, query_id=query_id, key_size=master.size_bits
        ),
    )


def create_cipher_and_metadata(
    master_key: str,
    query_id: str,
    smk_id: str,
    stage_type: StageType,
) -> Tuple[CipherTransform, Dict[str, str]]:
    """Encrypting transform plus the metadata to attach to the object."""
    if stage_type not in (StageType.S3, StageType.AZURE):
        raise UnsupportedProviderError(
            f"Only support s3 or azure stage. Stage Type: {stage_type}"
        )
    envelope = create_envelope(master_key, query_id, smk_id)
    return envelope.encryptor(), envelope.metadata_for(stage_type)


# =============================================================================
# Azure encryptiondata document
# =============================================================================


def build_encryption_data(key_b64: str, iv_b64: str) -> str:
    """Serialize the Azure ``encryptiondata`` document."""
    document = {
        "EncryptionMode": "FullBlob",
        AZ_KEY_WRAP: {
            "KeyId": "symmKey1",
            AZ_KEY: key_b64,
            "Algorithm": "AES_CBC_256",
        },
        "EncryptionAgent": {
            "Protocol": "1.0",
            "EncryptionAlgorithm": "AES_CBC_256",
        },
        AZ_IV: iv_b64,
        "KeyWrappingMetadata": {"EncryptionLibrary": ENCRYPTION_LIBRARY},
    }
    return json.dumps(document, separators=(",", ":"))


def _find_value(node: Any, field: str) -> Any:
    """Depth-first lookup of ``field`` anywhere under ``node``."""
    if isinstance(node, dict):
        if field in node:
            return node[field]
        children = node.values()
    elif isinstance(node, list):
        children = node
    else:
        return None
    for child in children:
        found = _find_value(child, field)
        if found is not None:
            return found
    return None


def parse_encryption_data(json_str: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Extract ``(wrapped_key_b64, iv_b64)`` from an ``encryptiondata`` document.

    Missing fields come back as None.

    Raises:
        SerializationError: If the document is not valid JSON
    """
    if json_str is None:
        return None, None
    try:
        node = json.loads(json_str)
    except ValueError as e:
        raise SerializationError(f"Failed to parse encryption data: {e}")

    iv = _find_value(node, AZ_IV)
    key = _find_value(_find_value(node, AZ_KEY_WRAP), AZ_KEY)
    return (
        key if isinstance(key, str) else None,
        iv if isinstance(iv, str) else None,
    )


# =============================================================================
# Decryption
# =============================================================================


def _lookup(metadata: Mapping[str, str], key: str) -> Optional[str]:
    # S3 returns user metadata keys lower-cased
    if key in metadata:
        return metadata[key]
    wanted = key.lower()
    for name, value in metadata.items():
        if name.lower() == wanted:
            return value
    return None


def extract_key_and_iv(
    metadata: Mapping[str, str], stage_type: StageType
) -> Tuple[str, str]:
    """
    Read the wrapped key and IV from object metadata.

    Raises:
        UnsupportedProviderError: For stage types other than S3 and Azure
        IncompleteMetadataError: If either value is absent
    """
    if stage_type is StageType.S3:
        key, iv = _lookup(metadata, AMZ_KEY), _lookup(metadata, AMZ_IV)
    elif stage_type is StageType.AZURE:
        key, iv = parse_encryption_data(_lookup(metadata, AZ_ENCRYPTIONDATA))
    else:
        raise UnsupportedProviderError(
            f"Only support s3 or azure stage. Stage Type: {stage_type}"
        )

    if key is None or iv is None:
        raise IncompleteMetadataError("File metadata incomplete")
    return key, iv


def open_decrypting_stream(
    stream: BinaryIO,
    master_key: str,
    metadata: Mapping[str, str],
    stage_type: StageType,
) -> BinaryIO:
    """
    Wrap ``stream`` so that reads return plaintext.

    Decryption is lazy: ciphertext is pulled from ``stream`` as the caller
    reads. A wrong master key fails here (key unwrap); corrupted ciphertext
    fails when the final block is read.

    Raises:
        UnsupportedProviderError, IncompleteMetadataError, CryptoError
    """
    key_b64, iv_b64 = extract_key_and_iv(metadata, stage_type)
    master = SecureKey.from_base64(master_key)
    try:
        wrapped = base64.b64decode(key_b64, validate=True)
        iv = base64.b64decode(iv_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"Base64 decode error: {e}")

    data_key = AesKeyWrap.unwrap(master, wrapped)
    return io.BufferedReader(DecryptingReader(stream, AesCbcCipher.decryptor(data_key, iv)))
