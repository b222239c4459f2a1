from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse, urlunparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import StorageError

logger = logging.getLogger(__name__)

_MISSING_BUCKET_CODES = ("404", "NoSuchBucket", "NotFound")


@dataclass(frozen=True)
class S3Config:
    # INTERNAL: reachable from containers (minio:9000 or host.docker.internal:9000)
    endpoint_url_internal: str
    # PUBLIC: reachable from the browser (usually http://localhost:9000)
    endpoint_url_public: str

    access_key: str
    secret_key: str
    region: str

    bucket_exports: str
    presign_expires_s: int = 3600


class S3Client:
    def __init__(self, cfg: S3Config) -> None:
        self.cfg = cfg
        self._client_internal = self._make_client(cfg.endpoint_url_internal)

    def _make_client(self, endpoint_url: str):
        # addressing_style=path is required by MinIO (/bucket/key)
        return boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=self.cfg.access_key,
            aws_secret_access_key=self.cfg.secret_key,
            region_name=self.cfg.region,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
            ),
        )

    def _rewrite_to_public(self, presigned_url: str) -> str:
        """
        The presigned URL is signed against the INTERNAL host; swap
        scheme+host:port for the PUBLIC endpoint and keep path+query.
        """
        u = urlparse(presigned_url)
        pub = urlparse(self.cfg.endpoint_url_public)

        scheme = pub.scheme or u.scheme
        netloc = pub.netloc or u.netloc

        return urlunparse((scheme, netloc, u.path, u.params, u.query, u.fragment))

    # ---------- Buckets ----------
    def bucket_exists(self, bucket: str) -> bool:
        try:
            self._client_internal.head_bucket(Bucket=bucket)
            return True
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            # MinIO sometimes answers 400 for a missing bucket
            if code in _MISSING_BUCKET_CODES or code == "400":
                return False
            raise StorageError(f"Cannot check bucket {bucket}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Cannot check bucket {bucket}: {e}") from e

    def ensure_bucket(self, bucket: str) -> None:
        if self.bucket_exists(bucket):
            return

        try:
            self._client_internal.create_bucket(Bucket=bucket)
            logger.info("Created bucket %s", bucket)
        except ClientError as e:
            # bucket may already exist (race)
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise StorageError(f"Cannot create bucket {bucket}: {e}") from e

    def ensure_bucket_exports(self) -> None:
        self.ensure_bucket(self.cfg.bucket_exports)

    # ---------- PUT/DELETE ----------
    def put_bytes(
        self,
        *,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        content_disposition: Optional[str] = None,
    ) -> None:
        self.ensure_bucket(bucket)
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type or "application/octet-stream",
        }
        if content_disposition:
            params["ContentDisposition"] = content_disposition
        try:
            self._client_internal.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Upload of {bucket}/{key} failed: {e}") from e

    def delete_object(self, *, bucket: str, key: str) -> None:
        try:
            self._client_internal.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Delete of {bucket}/{key} failed: {e}") from e

    # ---------- Presign ----------
    def presign_get(
        self,
        *,
        bucket: str,
        key: str,
        expires_s: Optional[int] = None,
        response_headers: Optional[dict[str, str]] = None,
    ) -> str:
        params: dict[str, Any] = {"Bucket": bucket, "Key": key}
        # response_headers: {"ResponseContentDisposition": "attachment; ..."}
        if response_headers:
            params.update(response_headers)

        try:
            url = self._client_internal.generate_presigned_url(
                ClientMethod="get_object",
                Params=params,
                ExpiresIn=int(expires_s or self.cfg.presign_expires_s),
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Presign of {bucket}/{key} failed: {e}") from e
        return self._rewrite_to_public(url)
