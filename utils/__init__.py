"""
Utility modules for the Exam Paper Extraction Pipeline.
"""

from .image_utils import (
    load_image,
    save_image,
    resize_image,
    encode_image,
    crop_region,
)
from .oracle import (
    Oracle,
    OracleError,
    OracleTimeout,
    OracleCancelled,
    CancelToken,
    PageImage,
    LabeledImage,
    Turn,
)
from .response_sanitizer import sanitize_response, parse_oracle_json

__all__ = [
    "load_image",
    "save_image",
    "resize_image",
    "encode_image",
    "crop_region",
    "Oracle",
    "OracleError",
    "OracleTimeout",
    "OracleCancelled",
    "CancelToken",
    "PageImage",
    "LabeledImage",
    "Turn",
    "sanitize_response",
    "parse_oracle_json",
]
