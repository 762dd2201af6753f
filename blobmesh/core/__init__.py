"""
Core module: Type definitions, error hierarchy, and constants.

This module provides the foundational abstractions for blobmesh:
- Result/Either monad for operation outcomes
- Error hierarchy with error kinds and fatal configuration errors
- Backend limits and defaults
"""

from blobmesh.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
)
from blobmesh.core.errors import (
    ErrorKind,
    BlobMeshError,
    StorageError,
    ConfigurationError,
    BucketNotFoundError,
    BucketCreationError,
    UnsupportedCapability,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "ErrorKind",
    "BlobMeshError",
    "StorageError",
    "ConfigurationError",
    "BucketNotFoundError",
    "BucketCreationError",
    "UnsupportedCapability",
]
