from __future__ import annotations

from pathlib import Path


class LocalStorageClient:
    """Blob store backed by a directory, for single-host deployments."""

    def __init__(self, root: str | Path, public_url: str | None = None) -> None:
        self.root = Path(root)
        self.public_url_base = (public_url or "").rstrip("/")

    def put(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        key = self._normalize_path(path)
        if not key:
            raise ValueError("object path is required")
        target = self.root / key
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise ValueError(f"local upload failed: {exc}") from exc
        return self.public_url(key)

    def public_url(self, path: str) -> str:
        key = self._normalize_path(path)
        if self.public_url_base:
            return f"{self.public_url_base}/{key}"
        return (self.root / key).resolve().as_uri()

    def _normalize_path(self, path: str | None) -> str:
        if not path:
            return ""
        parts = [part for part in path.strip().split("/") if part and part not in (".", "..")]
        return "/".join(parts)
