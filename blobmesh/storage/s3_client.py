"""
boto3-backed Object Store Client
================================

Thin synchronous wrapper over a boto3 S3 client implementing the
ObjectStoreClient protocol for AWS S3, MinIO, Cloudflare R2 and other
S3-compatible services.

Adapters merge per-key metadata into every request; parameters a given S3
operation does not accept are dropped here, using the botocore service
model, so that e.g. ContentType never reaches DeleteObject.

Timeouts, retries and connection pooling come from the botocore Config
built from S3Config.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, Iterator, Optional

from botocore.exceptions import ClientError

from blobmesh.core.constants import LIST_PAGE_SIZE
from blobmesh.storage.config import S3Config
from blobmesh.storage.protocols import ObjectStoreClient

logger = logging.getLogger(__name__)

# Region where CreateBucket must not carry a LocationConstraint
_DEFAULT_REGION = "us-east-1"

_MISSING_BUCKET_CODES = frozenset({"404", "NoSuchBucket", "NotFound"})

# HeadBucket needs s3:ListBucket; a denial still means the bucket is there
_FORBIDDEN_CODES = frozenset({"403", "AccessDenied", "Forbidden"})


class Boto3ObjectStoreClient(ObjectStoreClient):
    """
    ObjectStoreClient over a boto3 "s3" client.

    Example:
        >>> config = S3Config(bucket_name="media", endpoint_url="http://localhost:9000")
        >>> client = Boto3ObjectStoreClient.from_config(config)
        >>> adapter = AwsS3Adapter(client, config.bucket_name)
    """

    __slots__ = ("_client", "_accepted")

    def __init__(self, client: Any) -> None:
        """
        Args:
            client: A boto3 S3 client (boto3.client("s3", ...)).
        """
        self._client = client
        self._accepted: Dict[str, FrozenSet[str]] = {}

    @classmethod
    def from_config(cls, config: S3Config) -> Boto3ObjectStoreClient:
        """Build the boto3 client from an S3Config."""
        import boto3

        client = boto3.client("s3", config=config.get_client_config(), **config.get_boto_config())
        logger.info(
            "Created S3 client (region=%s, endpoint=%s)",
            config.region, config.endpoint_url or "aws",
        )
        return cls(client)

    @property
    def boto_client(self) -> Any:
        return self._client

    @property
    def region(self) -> Optional[str]:
        return self._client.meta.region_name

    # -------------------------------------------------------------------------
    # PARAMETER FILTERING
    # -------------------------------------------------------------------------

    def _accepted_params(self, operation_name: str) -> FrozenSet[str]:
        accepted = self._accepted.get(operation_name)
        if accepted is None:
            model = self._client.meta.service_model.operation_model(operation_name)
            shape = model.input_shape
            accepted = frozenset(shape.members) if shape is not None else frozenset()
            self._accepted[operation_name] = accepted
        return accepted

    def _filter(self, operation_name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        accepted = self._accepted_params(operation_name)
        filtered = {k: v for k, v in params.items() if k in accepted}
        dropped = set(params) - set(filtered)
        if dropped:
            logger.debug("Dropping parameters not accepted by %s: %s", operation_name, sorted(dropped))
        return filtered

    # -------------------------------------------------------------------------
    # BUCKETS
    # -------------------------------------------------------------------------

    def bucket_exists(self, bucket: str) -> bool:
        """
        HEAD the bucket.

        Returns False only when the bucket is missing. Access denied counts
        as present; other failures propagate.
        """
        try:
            self._client.head_bucket(Bucket=bucket)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_BUCKET_CODES:
                return False
            if code in _FORBIDDEN_CODES:
                logger.debug("HeadBucket on %s denied (%s), assuming it exists", bucket, code)
                return True
            raise
        return True

    def create_bucket(self, bucket: str, region: Optional[str] = None) -> None:
        params: Dict[str, Any] = {"Bucket": bucket}
        if region and region != _DEFAULT_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}
        self._client.create_bucket(**params)

    # -------------------------------------------------------------------------
    # OBJECTS
    # -------------------------------------------------------------------------

    def put_object(self, **params: Any) -> Dict[str, Any]:
        return self._client.put_object(**self._filter("PutObject", params))

    def get_object(self, **params: Any) -> Dict[str, Any]:
        return self._client.get_object(**self._filter("GetObject", params))

    def head_object(self, **params: Any) -> Dict[str, Any]:
        return self._client.head_object(**self._filter("HeadObject", params))

    def delete_object(self, **params: Any) -> Dict[str, Any]:
        return self._client.delete_object(**self._filter("DeleteObject", params))

    def copy_object(self, **params: Any) -> Dict[str, Any]:
        return self._client.copy_object(**self._filter("CopyObject", params))

    def list_objects(self, **params: Any) -> Dict[str, Any]:
        return self._client.list_objects_v2(**self._filter("ListObjectsV2", params))

    def iter_objects(self, bucket: str, prefix: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "Bucket": bucket,
            "PaginationConfig": {"PageSize": LIST_PAGE_SIZE},
        }
        if prefix:
            params["Prefix"] = prefix
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(**params):
            yield from page.get("Contents", [])

    # -------------------------------------------------------------------------
    # MULTIPART
    # -------------------------------------------------------------------------

    def create_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        return self._client.create_multipart_upload(
            **self._filter("CreateMultipartUpload", params)
        )

    def upload_part(self, **params: Any) -> Dict[str, Any]:
        return self._client.upload_part(**self._filter("UploadPart", params))

    def complete_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        return self._client.complete_multipart_upload(
            **self._filter("CompleteMultipartUpload", params)
        )

    def abort_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        return self._client.abort_multipart_upload(
            **self._filter("AbortMultipartUpload", params)
        )
