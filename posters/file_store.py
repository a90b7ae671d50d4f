import hashlib
import io
import logging
import os
import uuid
from urllib.parse import urlparse

from PIL import Image, UnidentifiedImageError

from .paths import ensure_dir, resolve_file_in_dir

_FORMAT_EXTENSIONS = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "WEBP": ".webp",
    "GIF": ".gif",
}
_INVALID_FILE_CHARS = set('<>:"/\\|?*\0')


def sha256_hex(data):
    return hashlib.sha256(data).hexdigest()


def infer_extension_from_url(url, fallback):
    if not url:
        return fallback
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return fallback
    ext = os.path.splitext(parsed.path)[1]
    return ext or fallback


def sniff_image_extension(data):
    """Extension of the image format in data, or None when Pillow cannot read it."""
    if not data:
        return None
    try:
        with Image.open(io.BytesIO(data)) as image:
            fmt = image.format
    except (UnidentifiedImageError, OSError):
        return None
    return _FORMAT_EXTENSIONS.get(fmt)


def sanitize_for_file(value):
    if not value or not str(value).strip():
        return uuid.uuid4().hex
    sanitized = "".join("_" if ch in _INVALID_FILE_CHARS else ch for ch in str(value).strip())
    return sanitized if sanitized.strip() else uuid.uuid4().hex


class PosterFileStore:
    def __init__(self, posters_dir):
        self.posters_dir = os.path.abspath(posters_dir)

    def resolve(self, file_name):
        return resolve_file_in_dir(file_name, self.posters_dir)

    def exists(self, file_name):
        full_path = self.resolve(file_name)
        return bool(full_path) and os.path.isfile(full_path)

    def read_bytes(self, file_name):
        full_path = self.resolve(file_name)
        if not full_path or not os.path.isfile(full_path):
            return None
        with open(full_path, "rb") as f:
            return f.read()

    def write(self, file_name, data):
        full_path = self.resolve(file_name)
        if not full_path:
            raise ValueError(f"Invalid poster file name: {file_name}")
        ensure_dir(self.posters_dir)
        tmp_path = f"{full_path}.part"
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, full_path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return full_path

    def count(self):
        if not os.path.isdir(self.posters_dir):
            return 0
        return sum(1 for entry in os.scandir(self.posters_dir) if entry.is_file())

    def clear(self):
        cleared = 0
        if not os.path.isdir(self.posters_dir):
            return cleared
        for entry in os.scandir(self.posters_dir):
            if not entry.is_file():
                continue
            try:
                os.remove(entry.path)
                cleared += 1
            except OSError:
                logging.warning("Poster cache clear: failed to delete %s", entry.path)
        return cleared
