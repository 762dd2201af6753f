"""
System-Wide Constants for blobmesh

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# SIZE UNITS
# =============================================================================
KB: Final[int] = 1024
MB: Final[int] = 1024 * KB
GB: Final[int] = 1024 * MB

# =============================================================================
# S3-CLASS BACKEND LIMITS
# =============================================================================
# Largest object accepted by a single PUT
MAX_CONTENT_SIZE: Final[int] = 5 * GB
# Smallest multipart part (all parts but the last)
MIN_PART_SIZE: Final[int] = 5 * MB
DEFAULT_PART_SIZE: Final[int] = MIN_PART_SIZE
MAX_PART_NUMBER: Final[int] = 10_000

# =============================================================================
# ADAPTER DEFAULTS
# =============================================================================
DEFAULT_ACL: Final[str] = "private"
DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"
PATH_SEPARATOR: Final[str] = "/"

# Bytes inspected by the content-type sniffer
SNIFF_BYTES: Final[int] = 2 * KB

# =============================================================================
# PAGINATION
# =============================================================================
LIST_PAGE_SIZE: Final[int] = 1000
