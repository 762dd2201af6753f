"""
Bucket lifecycle guard.

Verifies (and optionally creates) the backing bucket the first time an
operation needs it:

    UNCHECKED --exists--------------------> EXISTS
    UNCHECKED --missing, create enabled---> EXISTS
    UNCHECKED --missing, create disabled--> FAILED

EXISTS is never re-checked. FAILED raises on every later call without
querying the backend again.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum, auto

from botocore.exceptions import ClientError

from blobmesh.core.errors import BucketCreationError, BucketNotFoundError
from blobmesh.storage.protocols import ObjectStoreClient

logger = logging.getLogger(__name__)

# Create-bucket errors that mean another caller won the race
_ALREADY_EXISTS_CODES = frozenset({"BucketAlreadyOwnedByYou", "BucketAlreadyExists"})


class BucketState(Enum):
    """Cached knowledge of the backing bucket."""
    UNCHECKED = auto()
    EXISTS = auto()
    FAILED = auto()


class BucketLifecycleGuard:
    """
    Lazily ensures the bucket exists.

    The UNCHECKED -> EXISTS transition runs under a lock with a second state
    check inside it, so concurrent first use of one adapter issues a single
    create.
    """

    __slots__ = ("_client", "_bucket", "_create", "_state", "_lock")

    def __init__(self, client: ObjectStoreClient, bucket: str, create: bool = False) -> None:
        self._client = client
        self._bucket = bucket
        self._create = create
        self._state = BucketState.UNCHECKED
        self._lock = threading.Lock()

    @property
    def state(self) -> BucketState:
        return self._state

    @property
    def bucket(self) -> str:
        return self._bucket

    def ensure(self) -> None:
        """
        Make sure the bucket exists before an operation proceeds.

        Raises:
            BucketNotFoundError: Bucket missing and creation disabled.
            BucketCreationError: Bucket missing and the create call failed.
        """
        if self._state is BucketState.EXISTS:
            return

        with self._lock:
            if self._state is BucketState.EXISTS:
                return
            if self._state is BucketState.FAILED:
                raise BucketNotFoundError.for_bucket(self._bucket)

            if self._client.bucket_exists(self._bucket):
                self._state = BucketState.EXISTS
                return

            if not self._create:
                self._state = BucketState.FAILED
                logger.error("Bucket %s does not exist and create is disabled", self._bucket)
                raise BucketNotFoundError.for_bucket(self._bucket)

            self._create_bucket()
            self._state = BucketState.EXISTS

    def _create_bucket(self) -> None:
        region = self._client.region
        try:
            self._client.create_bucket(self._bucket, region)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in _ALREADY_EXISTS_CODES:
                logger.info("Bucket %s was created concurrently (%s)", self._bucket, code)
                return
            raise BucketCreationError.for_bucket(self._bucket, exc) from exc
        except Exception as exc:
            raise BucketCreationError.for_bucket(self._bucket, exc) from exc
        logger.info("Created bucket %s in region %s", self._bucket, region or "default")
