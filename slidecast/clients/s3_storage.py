from __future__ import annotations

from typing import Dict, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class S3StorageClient:
    """Rendered-video store on S3 or an S3-compatible endpoint.

    Without a bucket and credentials, objects are kept in memory so local
    runs and tests still get a stable URL back.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None,
        secret_key: str | None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        addressing_style: str | None = None,
        cache_control: str | None = "public, max-age=86400",
    ) -> None:
        self.bucket = _clean(bucket)
        self.endpoint_url = _clean(endpoint_url).rstrip("/") or None
        self.public_url_base = _clean(public_url).rstrip("/")
        self.cache_control = cache_control
        self._objects: Dict[str, bytes] = {}
        self._client = self._connect(
            _clean(access_key),
            _clean(secret_key),
            _clean(region_name) or None,
            _clean(addressing_style).lower() or "virtual",
        )

    def _connect(self, access_key: str, secret_key: str, region: str | None, addressing_style: str):
        if not (self.bucket and access_key and secret_key):
            return None
        session = boto3.session.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )
        config = BotoConfig(s3={"addressing_style": addressing_style}, retries={"max_attempts": 3})
        return session.client("s3", endpoint_url=self.endpoint_url, config=config)

    def put(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        key = self._object_key(path)
        if self._client is None:
            self._objects[key] = data
            return self.public_url(key)
        extra = {"ContentType": content_type}
        if self.cache_control:
            extra["CacheControl"] = self.cache_control
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - AWS error surface
            raise ValueError(f"S3 upload of {key} failed: {exc}") from exc
        return self.public_url(key)

    def public_url(self, path: str) -> str:
        key = "/".join(part for part in path.split("/") if part)
        if self.public_url_base:
            return f"{self.public_url_base}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"/{self.bucket}/{key}"

    @staticmethod
    def _object_key(path: str | None) -> str:
        key = "/".join(part for part in (path or "").strip().split("/") if part)
        if not key:
            raise ValueError("object path is required")
        return key
