"""
Object storage for uploaded resources, kept on the local filesystem and served
under ``/static``.
"""

import logging
import os
import uuid
from typing import Any, Dict, Optional

import config
import database

logger = logging.getLogger(__name__)


def _safe_name(filename: str):
    name, ext = os.path.splitext(filename or "upload")
    safe = name.replace(" ", "_").replace("/", "_").replace("\\", "_")[:64] or "upload"
    return safe, ext.lower()


def resource_type_for(ext: str) -> str:
    if ext in (".png", ".jpg", ".jpeg", ".gif", ".webp"):
        return "image"
    if ext in (".mp4", ".mov", ".webm"):
        return "video"
    return "raw"


class LocalObjectStorage:
    def __init__(self, root: str, base_url: str = "/static"):
        self.root = root
        self.base_url = base_url.rstrip("/")

    def _path(self, public_id: str, resource_type: str) -> str:
        return os.path.join(self.root, resource_type, public_id)

    def upload(self, buffer: bytes, metadata: Dict[str, Any]) -> Dict[str, Any]:
        name, ext = _safe_name(metadata.get("filename", "upload"))
        resource_type = metadata.get("resource_type") or resource_type_for(ext)
        folder = (metadata.get("folder") or "").strip("/").replace("..", "")
        ts = database.utcnow().strftime("%Y%m%d%H%M%S%f")
        public_id = "/".join(p for p in (folder, f"{name}_{ts}_{uuid.uuid4().hex[:8]}{ext}") if p)
        dest = self._path(public_id, resource_type)
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        with open(dest, "wb") as f:
            f.write(buffer)
        return {
            "success": True,
            "url": f"{self.base_url}/{resource_type}/{public_id}",
            "public_id": public_id,
            "resource_type": resource_type,
            "size": len(buffer),
        }

    def delete(self, public_id: str, resource_type: str = "raw") -> bool:
        os.remove(self._path(public_id, resource_type))
        return True


_storage: Optional[LocalObjectStorage] = None


def get_storage() -> LocalObjectStorage:
    global _storage
    if _storage is None:
        os.makedirs(config.UPLOAD_DIR, exist_ok=True)
        _storage = LocalObjectStorage(config.UPLOAD_DIR, config.PUBLIC_BASE_URL)
    return _storage


def delete_quietly(storage: LocalObjectStorage, public_id: str, resource_type: str) -> bool:
    """Storage deletion never blocks removing the database row."""
    try:
        return storage.delete(public_id, resource_type)
    except Exception:
        logger.warning("Failed to delete stored object %s (%s)", public_id, resource_type, exc_info=True)
        return False
