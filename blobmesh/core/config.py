"""
Root Configuration for blobmesh

Bundles storage and observability settings for applications and the
`python -m blobmesh` demo.

Design:
- Immutable after validation
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from blobmesh.core.types import Result, Ok, Err
from blobmesh.storage.config import BackendType, StorageConfig


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging and metrics configuration."""

    log_level: str = "INFO"
    log_json: bool = True
    metrics_enabled: bool = True


@dataclass(frozen=True)
class BlobMeshConfig:
    """Root configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Result[BlobMeshConfig, str]:
        """
        Load configuration from environment variables.

        Storage settings come from STORAGE_*, BLOBMESH_* and S3_*;
        observability from BLOBMESH_LOG_LEVEL, BLOBMESH_LOG_JSON and
        BLOBMESH_METRICS_ENABLED.
        """
        try:
            storage = StorageConfig.from_env()
            observability = ObservabilityConfig(
                log_level=os.getenv("BLOBMESH_LOG_LEVEL", "INFO").upper(),
                log_json=os.getenv("BLOBMESH_LOG_JSON", "true").lower() in ("true", "1", "yes"),
                metrics_enabled=os.getenv("BLOBMESH_METRICS_ENABLED", "true").lower()
                in ("true", "1", "yes"),
            )
            return Ok(cls(storage=storage, observability=observability))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate cross-section invariants."""
        if self.observability.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return Err(f"Unknown log level: {self.observability.log_level}")
        if self.storage.backend == BackendType.LOCAL and not str(self.storage.local_root):
            return Err("LOCAL backend requires a local_root")
        if self.storage.safe_keys and self.storage.backend != BackendType.LOCAL:
            return Err("safe_keys only applies to the LOCAL backend")
        return Ok(None)
