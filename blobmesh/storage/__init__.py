"""
Storage Module: Uniform Adapter Layer over Blob Stores
======================================================

Provides:
- Adapter and capability protocols
- AwsS3Adapter for S3-compatible object stores, with multipart upload
- In-memory and local-disk adapters
- ObjectStoreClient implementations (boto3, in-memory)
- Factory function for backend selection

Example:
    >>> adapter = create_adapter(StorageConfig.for_testing())
    >>> adapter.write("hello.txt", b"hi").unwrap()
    2
"""

from __future__ import annotations

import logging
from typing import Optional

from blobmesh.core.errors import ConfigurationError, ErrorKind
from blobmesh.storage.protocols import (
    Content,
    Adapter,
    MetadataSupporter,
    SizeCalculator,
    MtimeCalculator,
    MimeTypeProvider,
    ListKeysAware,
    DirectoryAware,
    ObjectStoreClient,
)
from blobmesh.storage.config import (
    AdapterOptions,
    BackendType,
    S3Config,
    StorageConfig,
)
from blobmesh.storage.bucket import BucketLifecycleGuard, BucketState
from blobmesh.storage.content_type import ContentTypeSniffer
from blobmesh.storage.keys import KeyPathMapper
from blobmesh.storage.metadata import MetadataStore
from blobmesh.storage.multipart import (
    CompletedPart,
    MultipartUploadCoordinator,
    UploadSession,
    UploadState,
)
from blobmesh.storage.s3_adapter import AwsS3Adapter
from blobmesh.storage.memory import InMemoryAdapter, InMemoryObjectStoreClient
from blobmesh.storage.local import LocalAdapter, SafeLocalAdapter
from blobmesh.observability.metrics import MetricsCollector, StorageMetrics

logger = logging.getLogger(__name__)

# Bucket of the in-memory backend when no S3 config names one
DEFAULT_MEMORY_BUCKET = "blobmesh"


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_adapter(
    config: Optional[StorageConfig] = None,
    client: Optional[ObjectStoreClient] = None,
    metrics: Optional[StorageMetrics] = None,
) -> Adapter:
    """
    Create the adapter selected by configuration.

    Args:
        config: Storage configuration; testing defaults when None.
        client: Endpoint override for IN_MEMORY and S3 backends.
        metrics: Metric set; defaults to the process-wide collector when
            config.enable_metrics is set.

    Returns:
        AwsS3Adapter: IN_MEMORY (over InMemoryObjectStoreClient) and S3.
        LocalAdapter / SafeLocalAdapter: LOCAL.

    Raises:
        ConfigurationError: S3 backend without an s3_config.

    Example:
        >>> adapter = create_adapter(StorageConfig(
        ...     backend=BackendType.S3,
        ...     s3_config=S3Config(bucket_name="media"),
        ... ))
    """
    config = config or StorageConfig.for_testing()

    if config.backend == BackendType.LOCAL:
        adapter_cls = SafeLocalAdapter if config.safe_keys else LocalAdapter
        logger.info("Using %s at %s", adapter_cls.__name__, config.local_root)
        return adapter_cls(config.local_root, create=config.adapter.create)

    if metrics is None and config.enable_metrics:
        metrics = StorageMetrics(MetricsCollector.get_instance())

    if config.backend == BackendType.S3:
        if config.s3_config is None:
            raise ConfigurationError(
                kind=ErrorKind.INVALID_ARGUMENT,
                message="The S3 backend needs an s3_config.",
                context={"backend": config.backend.name},
            )
        bucket = config.s3_config.bucket_name
        if client is None:
            from blobmesh.storage.s3_client import Boto3ObjectStoreClient
            client = Boto3ObjectStoreClient.from_config(config.s3_config)
    else:
        bucket = config.s3_config.bucket_name if config.s3_config else DEFAULT_MEMORY_BUCKET
        if client is None:
            client = InMemoryObjectStoreClient()

    logger.info("Using AwsS3Adapter on bucket %s via %s", bucket, type(client).__name__)
    return AwsS3Adapter(client, bucket, config.adapter, metrics=metrics)


__all__ = [
    # Protocols
    "Content",
    "Adapter",
    "MetadataSupporter",
    "SizeCalculator",
    "MtimeCalculator",
    "MimeTypeProvider",
    "ListKeysAware",
    "DirectoryAware",
    "ObjectStoreClient",
    # Config
    "AdapterOptions",
    "BackendType",
    "S3Config",
    "StorageConfig",
    # Components
    "BucketLifecycleGuard",
    "BucketState",
    "ContentTypeSniffer",
    "KeyPathMapper",
    "MetadataStore",
    "CompletedPart",
    "MultipartUploadCoordinator",
    "UploadSession",
    "UploadState",
    # Adapters
    "AwsS3Adapter",
    "InMemoryAdapter",
    "InMemoryObjectStoreClient",
    "LocalAdapter",
    "SafeLocalAdapter",
    # Factory
    "create_adapter",
]
