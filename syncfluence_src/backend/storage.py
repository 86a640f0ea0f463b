import os
import re
import uuid
from pathlib import Path, PurePosixPath

from errors import ValidationFailed

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Reduce an uploaded file name to a single safe path segment."""
    name = os.path.basename((filename or "").replace("\\", "/"))
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name or "file"


def avatar_path(uid: str, filename: str) -> str:
    return f"avatars/{uid}/{safe_filename(filename)}"


def attachment_path(room_id: str, filename: str) -> str:
    # Prefix keeps two uploads of the same name apart
    return f"attachments/{room_id}/{uuid.uuid4().hex[:12]}_{safe_filename(filename)}"


class LocalObjectStorage:
    """Object storage on the local filesystem, served back under a public URL prefix."""

    def __init__(self, root: str, public_url: str = "/files"):
        self.root = Path(root).resolve()
        self.public_url = public_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise ValidationFailed(f"Invalid storage path: {path}")
        return self.root.joinpath(*rel.parts)

    def save(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        print(f"📦 Stored {len(data)} bytes at {path}")
        return self.url_for(path)

    def url_for(self, path: str) -> str:
        self._resolve(path)
        return f"{self.public_url}/{path}"

    def path_for(self, path: str) -> Path:
        return self._resolve(path)

    def open(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()
