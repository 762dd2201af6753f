"""
Storage Configuration Module
============================

Type-safe, immutable configuration dataclasses for adapters and the
S3-compatible client they sit on.

Design Principles:
------------------
1. **Immutability**: All configs are frozen to prevent runtime mutation
2. **Validation**: Pre-conditions checked at construction time
3. **Defaults**: Sensible defaults for development; explicit for production
4. **Environment**: Supports loading from environment variables
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from botocore.config import Config

from blobmesh.core import constants as C

logger = logging.getLogger(__name__)


def _env_getters(prefix: str):
    """Build prefixed environment readers shared by the from_env constructors."""

    def _get(key: str, default: str = "") -> str:
        return os.environ.get(f"{prefix}_{key}", default)

    def _get_int(key: str, default: int) -> int:
        val = _get(key)
        return int(val) if val else default

    def _get_bool(key: str, default: bool) -> bool:
        val = _get(key).lower()
        if val in ("true", "1", "yes"):
            return True
        if val in ("false", "0", "no"):
            return False
        return default

    return _get, _get_int, _get_bool


# =============================================================================
# ENUMERATIONS
# =============================================================================

class BackendType(Enum):
    """
    Storage backend type enumeration.

    Used for factory dispatch in `create_adapter`.
    """
    IN_MEMORY = auto()  # Development/testing only
    LOCAL = auto()      # Directory on local disk
    S3 = auto()         # AWS S3 or any S3-compatible endpoint (MinIO, R2...)


# =============================================================================
# ADAPTER OPTIONS
# =============================================================================

@dataclass(frozen=True, slots=True)
class AdapterOptions:
    """
    Construction-time options of an object store adapter.

    Attributes:
        create: Create the bucket when it is missing instead of failing.
        directory: Logical prefix under which every key lives ("" for none).
        acl: Canned ACL applied to every write (e.g. "private").
        size_limit: Threshold in bytes; stream-backed writes at or above it
            use multipart upload. Must be <= 5 GiB.
        part_size: Multipart chunk size in bytes. Must be >= 5 MiB.
        detect_content_type: Sniff a content type when none was set.
        verify_part_checksums: Compare each part ETag with its local MD5.

    Raises:
        ValueError: If size_limit or part_size is out of bounds.
    """
    create: bool = False
    directory: str = ""
    acl: str = C.DEFAULT_ACL
    size_limit: int = C.MAX_CONTENT_SIZE
    part_size: int = C.DEFAULT_PART_SIZE
    detect_content_type: bool = False
    verify_part_checksums: bool = False

    def __post_init__(self) -> None:
        if not 0 < self.size_limit <= C.MAX_CONTENT_SIZE:
            raise ValueError(
                f"size_limit must be in (0, {C.MAX_CONTENT_SIZE}], "
                f"got {self.size_limit}"
            )
        if self.part_size < C.MIN_PART_SIZE:
            raise ValueError(
                f"part_size must be >= {C.MIN_PART_SIZE}, got {self.part_size}"
            )

    @classmethod
    def from_mapping(
        cls,
        options: Optional[Mapping[str, Any]] = None,
        **overrides: Any,
    ) -> AdapterOptions:
        """
        Build options from a loose mapping, as adapters accept them.

        Out-of-bounds size_limit/part_size values are ignored and the
        default is kept. Unknown option names are ignored.
        """
        merged: Dict[str, Any] = {**(options or {}), **overrides}
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in merged.items() if k in known}

        size_limit = kwargs.get("size_limit")
        if size_limit is not None and not 0 < int(size_limit) <= C.MAX_CONTENT_SIZE:
            logger.warning(
                "Ignoring size_limit=%s above the %s byte maximum",
                size_limit, C.MAX_CONTENT_SIZE,
            )
            del kwargs["size_limit"]

        part_size = kwargs.get("part_size")
        if part_size is not None and int(part_size) < C.MIN_PART_SIZE:
            logger.warning(
                "Ignoring part_size=%s below the %s byte minimum",
                part_size, C.MIN_PART_SIZE,
            )
            del kwargs["part_size"]

        unknown = set(merged) - known
        if unknown:
            logger.debug("Ignoring unknown adapter options: %s", sorted(unknown))

        return cls(**kwargs)

    @classmethod
    def from_env(cls, prefix: str = "BLOBMESH") -> AdapterOptions:
        """
        Construct options from environment variables.

        Environment Variables:
        - {prefix}_CREATE_BUCKET: Auto-create missing bucket (default: false)
        - {prefix}_DIRECTORY: Key prefix (default: "")
        - {prefix}_ACL: Canned ACL (default: private)
        - {prefix}_SIZE_LIMIT: Multipart threshold in bytes
        - {prefix}_PART_SIZE: Multipart part size in bytes
        - {prefix}_DETECT_CONTENT_TYPE: Sniff content types (default: false)
        - {prefix}_VERIFY_PART_CHECKSUMS: Check part ETags (default: false)
        """
        _get, _get_int, _get_bool = _env_getters(prefix)
        return cls.from_mapping({
            "create": _get_bool("CREATE_BUCKET", False),
            "directory": _get("DIRECTORY", ""),
            "acl": _get("ACL", C.DEFAULT_ACL),
            "size_limit": _get_int("SIZE_LIMIT", C.MAX_CONTENT_SIZE),
            "part_size": _get_int("PART_SIZE", C.DEFAULT_PART_SIZE),
            "detect_content_type": _get_bool("DETECT_CONTENT_TYPE", False),
            "verify_part_checksums": _get_bool("VERIFY_PART_CHECKSUMS", False),
        })


# =============================================================================
# S3 CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class S3Config:
    """
    S3-compatible object store client configuration.

    Supports AWS S3, MinIO, Cloudflare R2, and other S3-compatible stores.
    Timeouts and retries live here: adapters impose none of their own.

    Attributes:
        bucket_name: S3 bucket name (required).
        region: AWS region; also the location constraint of created buckets.
        endpoint_url: Custom endpoint for MinIO/R2 (None for AWS).
        access_key_id: AWS access key (None for IAM role auth).
        secret_access_key: AWS secret key (None for IAM role auth).
        session_token: Temporary session token for STS.
        max_pool_connections: HTTP connection pool size.
        connect_timeout_seconds: TCP connect timeout.
        read_timeout_seconds: Read operation timeout.
        max_retries: Max retry attempts for transient failures.
        use_ssl: Use HTTPS for connections.
        verify_ssl: Verify SSL certificates (disable for self-signed).
    """
    bucket_name: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None

    max_pool_connections: int = 10
    connect_timeout_seconds: int = 5
    read_timeout_seconds: int = 60
    max_retries: int = 3

    use_ssl: bool = True
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any invariant is violated.
        """
        if not self.bucket_name or len(self.bucket_name) < 3:
            raise ValueError("bucket_name must be at least 3 characters")
        if self.max_pool_connections <= 0:
            raise ValueError(
                f"max_pool_connections must be > 0, got {self.max_pool_connections}"
            )
        if self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0")
        if self.read_timeout_seconds <= 0:
            raise ValueError("read_timeout_seconds must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @classmethod
    def from_env(cls, prefix: str = "S3") -> S3Config:
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_BUCKET: Bucket name (required)
        - {prefix}_REGION: AWS region (default: us-east-1)
        - {prefix}_ENDPOINT_URL: Custom endpoint URL
        - {prefix}_ACCESS_KEY_ID: AWS access key ID
        - {prefix}_SECRET_ACCESS_KEY: AWS secret access key
        - AWS_SESSION_TOKEN: STS session token
        - {prefix}_MAX_POOL_CONNECTIONS: Pool size (default: 10)
        - {prefix}_USE_SSL: Use HTTPS (default: true)
        - {prefix}_VERIFY_SSL: Verify certs (default: true)

        Raises:
            ValueError: If required bucket_name is missing.
        """
        _get, _get_int, _get_bool = _env_getters(prefix)

        bucket = _get("BUCKET")
        if not bucket:
            raise ValueError(f"Environment variable {prefix}_BUCKET is required")

        return cls(
            bucket_name=bucket,
            region=_get("REGION", "us-east-1"),
            endpoint_url=_get("ENDPOINT_URL") or None,
            access_key_id=_get("ACCESS_KEY_ID") or os.environ.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=_get("SECRET_ACCESS_KEY") or os.environ.get("AWS_SECRET_ACCESS_KEY"),
            session_token=os.environ.get("AWS_SESSION_TOKEN"),
            max_pool_connections=_get_int("MAX_POOL_CONNECTIONS", 10),
            connect_timeout_seconds=_get_int("CONNECT_TIMEOUT", 5),
            read_timeout_seconds=_get_int("READ_TIMEOUT", 60),
            max_retries=_get_int("MAX_RETRIES", 3),
            use_ssl=_get_bool("USE_SSL", True),
            verify_ssl=_get_bool("VERIFY_SSL", True),
        )

    def get_boto_config(self) -> Dict[str, Any]:
        """
        Generate keyword arguments for boto3.client('s3', **config).

        Timeouts, retries and pooling are in get_client_config().
        """
        config: Dict[str, Any] = {
            "region_name": self.region,
            "use_ssl": self.use_ssl,
        }

        if self.endpoint_url:
            config["endpoint_url"] = self.endpoint_url

        if self.access_key_id and self.secret_access_key:
            config["aws_access_key_id"] = self.access_key_id
            config["aws_secret_access_key"] = self.secret_access_key

        if self.session_token:
            config["aws_session_token"] = self.session_token

        if not self.verify_ssl:
            config["verify"] = False

        return config

    def get_client_config(self) -> Config:
        """botocore Config carrying pool size, timeouts and retry policy."""
        return Config(
            max_pool_connections=self.max_pool_connections,
            connect_timeout=self.connect_timeout_seconds,
            read_timeout=self.read_timeout_seconds,
            retries={"max_attempts": self.max_retries, "mode": "standard"},
        )


# =============================================================================
# UNIFIED STORAGE CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Unified configuration for the adapter factory.

    Attributes:
        backend: Which adapter `create_adapter` builds.
        local_root: Root directory of the LOCAL backend.
        s3_config: S3 configuration (required if backend == S3).
        adapter: Adapter options (directory, ACL, multipart thresholds...).
        safe_keys: LOCAL backend only; base64-encode keys on disk.
        enable_metrics: Record operation counters and latencies.
    """
    backend: BackendType = BackendType.IN_MEMORY
    local_root: Path = field(default_factory=lambda: Path("./data/objects"))
    s3_config: Optional[S3Config] = None
    adapter: AdapterOptions = field(default_factory=AdapterOptions)
    safe_keys: bool = False
    enable_metrics: bool = True

    def __post_init__(self) -> None:
        if self.backend == BackendType.S3 and self.s3_config is None:
            raise ValueError("s3_config required when backend=S3")

    @classmethod
    def for_testing(cls, adapter: Optional[AdapterOptions] = None) -> StorageConfig:
        """In-memory backend, bucket auto-created."""
        return cls(
            backend=BackendType.IN_MEMORY,
            adapter=adapter or AdapterOptions(create=True),
            enable_metrics=True,
        )

    @classmethod
    def from_env(cls) -> StorageConfig:
        """
        Construct full configuration from environment.

        Environment Variables:
        - STORAGE_BACKEND: in_memory|local|s3|minio
        - STORAGE_LOCAL_ROOT: Root directory for the local backend
        - STORAGE_SAFE_KEYS: true|false
        - STORAGE_ENABLE_METRICS: true|false

        Plus adapter (BLOBMESH_*) and S3 (S3_*) variables.
        """
        _get, _, _get_bool = _env_getters("STORAGE")

        backend_map = {
            "in_memory": BackendType.IN_MEMORY,
            "local": BackendType.LOCAL,
            "s3": BackendType.S3,
            "minio": BackendType.S3,
        }
        backend = backend_map.get(_get("BACKEND", "in_memory").lower(), BackendType.IN_MEMORY)

        s3_config = S3Config.from_env() if backend == BackendType.S3 else None

        return cls(
            backend=backend,
            local_root=Path(_get("LOCAL_ROOT", "./data/objects")),
            s3_config=s3_config,
            adapter=AdapterOptions.from_env(),
            safe_keys=_get_bool("SAFE_KEYS", False),
            enable_metrics=_get_bool("ENABLE_METRICS", True),
        )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "BackendType",
    "AdapterOptions",
    "S3Config",
    "StorageConfig",
]
