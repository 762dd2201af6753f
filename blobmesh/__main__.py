#!/usr/bin/env python3
"""
blobmesh demo

Runs the S3 adapter against the in-memory object store client: small
writes, metadata, rename, directory emulation and a multipart upload,
then prints the collected metrics.

Usage:
    python -m blobmesh

    # Against a real endpoint
    STORAGE_BACKEND=s3 S3_BUCKET=demo BLOBMESH_CREATE_BUCKET=true python -m blobmesh
"""

from __future__ import annotations

import io
import sys

from blobmesh.core.config import BlobMeshConfig
from blobmesh.core.constants import MB
from blobmesh.filesystem import Filesystem
from blobmesh.observability.logging import LogLevel, setup_logging
from blobmesh.observability.metrics import MetricsCollector, StorageMetrics
from blobmesh.storage import AdapterOptions, BackendType, StorageConfig, create_adapter
from blobmesh.storage.protocols import MetadataSupporter


def demo() -> None:
    print("\n" + "=" * 60)
    print("blobmesh - Adapter Demo")
    print("=" * 60 + "\n")

    config_result = BlobMeshConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)
    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        sys.exit(1)

    setup_logging(
        LogLevel.from_name(config.observability.log_level),
        json_output=config.observability.log_json,
    )

    storage = config.storage
    if storage.backend == BackendType.IN_MEMORY:
        storage = StorageConfig.for_testing(AdapterOptions(create=True, directory="demo", size_limit=8 * MB))

    collector = MetricsCollector()
    adapter = create_adapter(storage, metrics=StorageMetrics(collector))
    fs = Filesystem(adapter)
    print(f"✓ Adapter ready: {type(adapter).__name__} ({storage.backend.name})")

    print("\n--- Demo Operations ---\n")

    if isinstance(adapter, MetadataSupporter):
        adapter.set_metadata("reports/summary.json", {"ContentType": "application/json"})
    written = fs.write("reports/summary.json", b'{"status": "ok"}', overwrite=True)
    print(f"1. Wrote reports/summary.json: {written}")

    read = fs.read("reports/summary.json")
    print(f"2. Read back: {read.unwrap_or(b'')!r}")
    print(f"   Content type: {fs.mime_type('reports/summary.json').unwrap_or('?')}")

    renamed = fs.rename("reports/summary.json", "archive/summary.json")
    print(f"3. Renamed to archive/summary.json: {renamed}")
    print(f"   is_directory('archive'): {fs.is_directory('archive')}")
    print(f"   is_directory('reports'): {fs.is_directory('reports')}")

    payload = io.BytesIO(b"\xab" * (12 * MB))
    upload = fs.write("media/large.bin", payload, overwrite=True)
    print(f"4. Multipart upload of 12 MiB: {upload}")
    print(f"   Size reported by backend: {fs.size('media/large.bin').unwrap_or(-1)}")

    print(f"5. Keys: {fs.keys()}")

    print("\n--- Metrics ---\n")
    print(collector.export_prometheus())

    print("\n✓ Demo complete")
    print("=" * 60 + "\n")


def run() -> None:
    try:
        demo()
    except KeyboardInterrupt:
        print("\nInterrupted")
    except Exception as e:
        print(f"Error: {e}")
        raise


if __name__ == "__main__":
    run()
