"""File storage for image proofs: decode inline data URIs and host them as files."""

import base64
import binascii
import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Optional, Tuple

from portal.config import get_config_value
from portal.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5_000_000

_DATA_URI_RE = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.*)$", re.DOTALL)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}


def decode_data_uri(uri: str) -> Tuple[str, bytes]:
    """Splits a base64 image data URI into (mime type, bytes).

    Raises:
        ValidationError: not a base64 image data URI, or larger than MAX_IMAGE_BYTES
    """
    match = _DATA_URI_RE.match(uri or "")
    if not match:
        raise ValidationError("Image proof must be a base64 data:image/... URI")
    mime, encoded = match.group(1).lower(), match.group(2)
    # Cheap size guard before decoding: base64 expands by 4/3
    if len(encoded) * 3 // 4 > MAX_IMAGE_BYTES + 3:
        raise ValidationError("Image proof is larger than 5MB")
    try:
        content = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Image proof is not valid base64")
    if len(content) > MAX_IMAGE_BYTES:
        raise ValidationError("Image proof is larger than 5MB")
    return mime, content


class BlobStorage:
    """Stores files under a directory and serves them from a public base URL."""

    def __init__(self, root: Optional[str] = None, public_base_url: Optional[str] = None):
        self.root = Path(root or get_config_value("storage.blob_dir", "uploads"))
        self.public_base_url = (
            public_base_url
            or get_config_value("storage.public_base_url", "http://localhost:8000/uploads")
        ).rstrip("/")
        self.logger = logging.getLogger(self.__class__.__name__)

    def upload_data_uri(self, uri: str, prefix: str = "") -> str:
        """Writes an inline image and returns its hosted URL.

        Files are content-addressed, so re-uploading the same image is a no-op.
        """
        mime, content = decode_data_uri(uri)
        digest = hashlib.sha256(content).hexdigest()[:32]
        name = f"{digest}.{_EXTENSIONS.get(mime, 'bin')}"
        if prefix:
            name = f"{prefix}_{name}"

        os.makedirs(self.root, exist_ok=True)
        path = self.root / name
        if not path.exists():
            with open(path, "wb") as f:
                f.write(content)
            self.logger.info(f"Stored image proof {name} ({len(content)} bytes)")
        return f"{self.public_base_url}/{name}"
