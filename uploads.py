"""
Image uploads: wrapping form files for multipart requests and validating them.
"""
from dataclasses import dataclass
import os

import aiohttp

ALLOWED_IMAGE_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
)
ALLOWED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")
MAX_IMAGE_BYTES = 5 * 1024 * 1024

# folders the upload endpoint accepts
IMAGE_FOLDERS = ("book", "author", "publisher", "avatar", "series")


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    content: bytes
    content_type: str

    @classmethod
    def from_storage(cls, storage):
        """Build from a werkzeug FileStorage; None when the form field was left empty."""
        if storage is None or not storage.filename:
            return None
        return cls(storage.filename, storage.read(), storage.mimetype or "application/octet-stream")

    def add_to(self, form: aiohttp.FormData, field: str) -> None:
        form.add_field(field, self.content, filename=self.filename, content_type=self.content_type)


def validate_image_upload(upload: ImageUpload) -> str | None:
    """Return an error message, or None when the image is acceptable."""
    if upload.content_type not in ALLOWED_IMAGE_TYPES:
        return "Only image files (JPG, PNG, GIF, WEBP, SVG) are allowed"
    ext = os.path.splitext(upload.filename.lower())[1]
    if ext not in ALLOWED_EXTENSIONS:
        return "Invalid file extension. Allowed: JPG, PNG, GIF, WEBP, SVG"
    if len(upload.content) > MAX_IMAGE_BYTES:
        return "File size must be less than 5MB"
    return None
