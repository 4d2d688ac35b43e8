"""Proof file storage confined to ``<UPLOAD_FOLDER>/review-files``."""
import os
import posixpath
import uuid
from typing import Optional

from flask import current_app

from resolution_bingo.errors import FileTooLarge, UnsupportedFileType, UnsafeStoragePath

SUBDIR = 'review-files'
DEFAULT_MAX_BYTES = 5 * 1024 * 1024

EXTENSION_BY_MIME = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/webp': 'webp',
    'image/gif': 'gif',
    'application/pdf': 'pdf',
    'video/mp4': 'mp4',
    'video/quicktime': 'mov',
}
ALLOWED_MIME_TYPES = frozenset(EXTENSION_BY_MIME)
ALLOWED_EXTENSIONS = frozenset(EXTENSION_BY_MIME.values()) | {'jpeg'}


def safe_extension(mime_type: Optional[str], filename: Optional[str]) -> Optional[str]:
    """Extension from the MIME type, else from an allow-listed filename suffix."""
    if mime_type:
        return EXTENSION_BY_MIME.get(mime_type)
    name = filename or ''
    if '.' not in name:
        return None
    ext = name.rsplit('.', 1)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        return None
    return 'jpg' if ext == 'jpeg' else ext


class ProofStorage:
    def __init__(self, root: Optional[str] = None, max_bytes: Optional[int] = None):
        self._root = root
        self._max_bytes = max_bytes

    @property
    def root(self) -> str:
        return self._root or current_app.config['UPLOAD_FOLDER']

    @property
    def max_bytes(self) -> int:
        if self._max_bytes is not None:
            return self._max_bytes
        return int(current_app.config.get('MAX_PROOF_FILE_BYTES', DEFAULT_MAX_BYTES))

    def validate(self, size: int, filename: Optional[str], mime_type: Optional[str]) -> str:
        if size > self.max_bytes:
            raise FileTooLarge(f'File size exceeds {self.max_bytes // (1024 * 1024)}MB limit')
        if mime_type and mime_type not in ALLOWED_MIME_TYPES:
            raise UnsupportedFileType('Unsupported file type')
        ext = safe_extension(mime_type, filename)
        if not ext:
            raise UnsupportedFileType('Unsupported file type')
        return ext

    def save_file(self, data: bytes, filename: Optional[str], mime_type: Optional[str]) -> str:
        """Write ``data`` under a random name; returns the path relative to the root."""
        ext = self.validate(len(data), filename, mime_type)
        directory = os.path.join(self.root, SUBDIR)
        os.makedirs(directory, exist_ok=True)
        stored_name = f"{uuid.uuid4().hex}.{ext}"
        with open(os.path.join(directory, stored_name), 'wb') as fh:
            fh.write(data)
        return f"{SUBDIR}/{stored_name}"

    def resolve(self, path: str) -> str:
        relative = posixpath.normpath((path or '').replace('\\', '/').lstrip('/'))
        if not relative.startswith(SUBDIR + '/') or relative == SUBDIR:
            raise UnsafeStoragePath(f'Refusing to touch path outside {SUBDIR}: {path}')
        base = os.path.realpath(os.path.join(self.root, SUBDIR))
        target = os.path.realpath(os.path.join(self.root, relative))
        if os.path.commonpath([base, target]) != base:
            raise UnsafeStoragePath(f'Refusing to touch path outside {SUBDIR}: {path}')
        return target

    def delete_file(self, path: str) -> None:
        target = self.resolve(path)
        try:
            os.remove(target)
        except FileNotFoundError:
            pass
