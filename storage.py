"""
Uploads of base64 data-URL payloads to object storage.

`upload_batch` never aborts on a single bad item: every payload is attempted
and the caller gets one `UploadResult` per input, in input order.
"""
import base64
import binascii
import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from firebase_admin import storage

from config import Settings
from errors import StorageError, ValidationError
from firebase_init import firebase_app

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.DOTALL)


def is_data_url(value) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def decode_data_url(value: str) -> Tuple[bytes, str]:
    match = DATA_URL_RE.match(value or "")
    if not match:
        raise ValidationError("Invalid base64 string")
    mime_type, payload = match.groups()
    try:
        return base64.b64decode(payload), mime_type
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid base64 string")


def file_extension(mime_type: str, original_name: Optional[str] = None) -> str:
    if original_name and "." in original_name:
        return original_name.rsplit(".", 1)[-1]
    return mime_type.split("/")[-1] if "/" in mime_type else "file"


@dataclass
class UploadResult:
    index: int
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.url is not None


def upload_batch(store, payloads: Sequence[Tuple[str, Optional[str]]], folder: str) -> List[UploadResult]:
    """Upload `(data_url, original_name)` pairs, recording failures instead of raising."""
    results = []
    for index, (data_url, original_name) in enumerate(payloads):
        try:
            data, mime_type = decode_data_url(data_url)
            url = store.store(data, mime_type, folder=folder, extension=file_extension(mime_type, original_name))
        except (ValidationError, StorageError) as e:
            logger.warning("Upload %d into %s/ failed: %s", index, folder, e)
            results.append(UploadResult(index=index, error=str(e)))
            continue
        results.append(UploadResult(index=index, url=url))
    return results


def successful_urls(results: Sequence[UploadResult]) -> List[str]:
    return [r.url for r in results if r.ok]


class FirebaseObjectStore:
    """Stores uploads as public blobs in the configured Cloud Storage bucket."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def store(self, data: bytes, content_type: str, folder: str = "uploads", extension: Optional[str] = None) -> str:
        name = f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(6)}.{extension or 'file'}"
        try:
            bucket = storage.bucket(app=firebase_app(self.settings))
            blob = bucket.blob(name)
            blob.upload_from_string(data, content_type=content_type)
            blob.make_public()
        except Exception as e:
            raise StorageError(f"Upload of {name} failed: {e}") from e
        return f"https://storage.googleapis.com/{bucket.name}/{name}"
