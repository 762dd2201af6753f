"""
blobmesh: Uniform Filesystem Abstraction over Blob Stores

One small operation set (read, write, delete, rename, exists, list keys,
stat) behaving the same on every backend:
- S3-compatible object stores (AWS S3, MinIO, R2) with multipart upload
- Local disk, plain or with base64-safe key names
- In-memory stores for development and testing

Backend-specific capabilities (metadata, size, mtime, content type, key
listing, directory emulation) are optional protocols discovered with
isinstance().
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from blobmesh.core.types import Result, Ok, Err
from blobmesh.core.errors import (
    ErrorKind,
    BlobMeshError,
    StorageError,
    ConfigurationError,
    BucketNotFoundError,
    BucketCreationError,
    UnsupportedCapability,
)
from blobmesh.core.config import BlobMeshConfig, ObservabilityConfig

from blobmesh.storage import (
    Adapter,
    MetadataSupporter,
    SizeCalculator,
    MtimeCalculator,
    MimeTypeProvider,
    ListKeysAware,
    DirectoryAware,
    ObjectStoreClient,
    AdapterOptions,
    BackendType,
    S3Config,
    StorageConfig,
    AwsS3Adapter,
    InMemoryAdapter,
    InMemoryObjectStoreClient,
    LocalAdapter,
    SafeLocalAdapter,
    create_adapter,
)
from blobmesh.filesystem import Filesystem

__all__ = [
    # Version
    "__version__",
    # Core types
    "Result",
    "Ok",
    "Err",
    # Errors
    "ErrorKind",
    "BlobMeshError",
    "StorageError",
    "ConfigurationError",
    "BucketNotFoundError",
    "BucketCreationError",
    "UnsupportedCapability",
    # Config
    "BlobMeshConfig",
    "ObservabilityConfig",
    "AdapterOptions",
    "BackendType",
    "S3Config",
    "StorageConfig",
    # Protocols
    "Adapter",
    "MetadataSupporter",
    "SizeCalculator",
    "MtimeCalculator",
    "MimeTypeProvider",
    "ListKeysAware",
    "DirectoryAware",
    "ObjectStoreClient",
    # Adapters
    "AwsS3Adapter",
    "InMemoryAdapter",
    "InMemoryObjectStoreClient",
    "LocalAdapter",
    "SafeLocalAdapter",
    "Filesystem",
    "create_adapter",
]
