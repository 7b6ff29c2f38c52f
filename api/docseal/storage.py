"""Local content store for template sources, certificate containers and artifacts."""

import os
import uuid
from typing import Optional

from . import config, pathguard


class ContentStore:
    """Files addressed by refs relative to the upload directory."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir or config.UPLOAD_DIR

    def path_for(self, ref: str) -> str:
        return pathguard.resolve(ref, self.base_dir)

    def new_ref(self, folder: str, original_filename: Optional[str] = None, default_ext: str = "") -> str:
        ext = os.path.splitext(original_filename or "")[1].lower() or default_ext
        return f"{folder}/{uuid.uuid4().hex}{ext}"

    def put(self, ref: str, data: bytes) -> str:
        pathguard.write_bytes(ref, data, self.base_dir)
        return ref

    def get(self, ref: str) -> bytes:
        return pathguard.read_bytes(ref, self.base_dir)

    def exists(self, ref: str) -> bool:
        return os.path.isfile(self.path_for(ref))

    def delete(self, ref: str) -> bool:
        return pathguard.remove(ref, self.base_dir)
