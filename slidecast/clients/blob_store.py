from __future__ import annotations

from typing import Protocol

from slidecast.config import Settings


class BlobStore(Protocol):
    def put(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str: ...  # pragma: no cover


def build_blob_store(settings: Settings) -> BlobStore:
    kind = settings.blob_store.strip().lower()
    if kind == "s3":
        from slidecast.clients.s3_storage import S3StorageClient

        return S3StorageClient(
            bucket=settings.s3_bucket,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            public_url=settings.s3_public_url,
            addressing_style=settings.s3_addressing_style,
        )
    if kind == "supabase":
        from slidecast.clients.supabase_storage import SupabaseStorageClient

        return SupabaseStorageClient(
            api_url=settings.supabase_url,
            public_url=settings.supabase_public_url,
            bucket=settings.supabase_bucket,
            api_key=settings.supabase_api_key,
        )
    if kind == "local":
        from slidecast.clients.local_storage import LocalStorageClient

        return LocalStorageClient(root=settings.output_root, public_url=settings.public_base_url)
    raise ValueError(f"unknown blob store: {settings.blob_store}")
