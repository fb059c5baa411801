"""Utility helpers."""

from .cache import AnalysisCache
from .images import content_hash, decode_data_uri, detect_mime_type, load_image_bytes
from .json_extract import extract_json_object

__all__ = [
    "AnalysisCache",
    "content_hash",
    "decode_data_uri",
    "detect_mime_type",
    "load_image_bytes",
    "extract_json_object",
]
