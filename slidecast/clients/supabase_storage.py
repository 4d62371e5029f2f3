from __future__ import annotations

from typing import Dict

import httpx


class SupabaseStorageClient:
    def __init__(
        self,
        api_url: str | None,
        public_url: str | None,
        bucket: str,
        api_key: str | None,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = (api_url or "").rstrip("/")
        self.public_url_base = (public_url or "").rstrip("/")
        self.bucket = bucket.strip("/")
        self.api_key = (api_key or "").strip()
        self.timeout = timeout
        self._transport = transport
        self._memory: Dict[str, bytes] = {}

    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def put(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        object_path = self._normalize_path(path)
        if not object_path:
            raise ValueError("object path is required")
        if not self.is_configured():
            self._memory[object_path] = data
            return self.public_url(object_path)

        url = f"{self.api_url}/storage/v1/object/{self.bucket}/{object_path}"
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": content_type,
            "x-upsert": "true",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, headers=headers, content=data)
        except httpx.HTTPError as exc:
            raise ValueError(f"Supabase upload failed: {exc}") from exc
        if response.status_code not in (200, 201):
            raise ValueError(f"Supabase upload failed: {response.status_code} {response.text}")
        return self.public_url(object_path)

    def public_url(self, path: str) -> str:
        base = self.public_url_base or f"{self.api_url.rstrip('/')}/storage/v1/object/public"
        joined_path = "/".join(part.strip("/") for part in (self.bucket, path))
        return f"{base.rstrip('/')}/{joined_path}"

    def _normalize_path(self, path: str) -> str:
        return path.strip().lstrip("/")
