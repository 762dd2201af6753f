"""blobmesh test suite."""
