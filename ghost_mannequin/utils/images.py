"""Image reference helpers: data URIs, MIME sniffing, fetching, hashing."""

import base64
import binascii
import hashlib

import httpx

from ..errors import SchemaError, raise_for_collaborator_status


def detect_mime_type(image_bytes: bytes, fallback: str = "image/png") -> str:
    """Detect the image format from magic bytes (more reliable than headers)."""
    if image_bytes[:3] == b'\xff\xd8\xff':
        return "image/jpeg"
    if image_bytes[:8] == b'\x89PNG\r\n\x1a\n':
        return "image/png"
    if image_bytes[:4] == b'RIFF' and image_bytes[8:12] == b'WEBP':
        return "image/webp"
    if image_bytes[:6] in (b'GIF87a', b'GIF89a'):
        return "image/gif"
    return fallback


def decode_data_uri(ref: str) -> tuple[bytes, str]:
    """Decode a ``data:<mime>;base64,...`` URI into bytes and MIME type."""
    if not ref.startswith("data:"):
        raise ValueError("not a data URI")
    header, sep, encoded = ref.partition(",")
    if not sep:
        raise ValueError("malformed data URI")
    declared = header[len("data:"):].split(";")[0] or "application/octet-stream"
    try:
        data = base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64 payload: {e}") from e
    return data, detect_mime_type(data, fallback=declared)


async def load_image_bytes(ref: str, client: httpx.AsyncClient) -> tuple[bytes, str]:
    """Resolve an image reference (data URI or URL) to bytes and MIME type."""
    if ref.startswith("data:"):
        try:
            return decode_data_uri(ref)
        except ValueError as e:
            raise SchemaError(f"unreadable image data URI: {e}") from e

    response = await client.get(ref, follow_redirects=True)
    raise_for_collaborator_status(response, "image fetch")
    declared = response.headers.get("content-type", "image/png").split(";")[0]
    return response.content, detect_mime_type(response.content, fallback=declared)


def content_hash(ref: str) -> str:
    """Stable SHA-256 of an image reference, used as a cache key."""
    return hashlib.sha256(ref.encode("utf-8")).hexdigest()
