"""
Configuration constants for the Exam Paper Extraction Pipeline.

Values can be overridden through environment variables (or a .env file).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


# Directory paths
PROJECT_ROOT = Path(__file__).parent
PDF_DIR = Path(os.environ.get("EXAM_PDF_DIR", PROJECT_ROOT / "pdfs"))
OUTPUT_DIR = Path(os.environ.get("EXAM_OUTPUT_DIR", PROJECT_ROOT / "output"))
CROPS_DIR_NAME = "crops"

# Gemini configuration
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_TEMPERATURE = _env_float("GEMINI_TEMPERATURE", 0.1)

# Per-call timeout for every oracle request (seconds)
ORACLE_TIMEOUT_SECONDS = _env_float("ORACLE_TIMEOUT_SECONDS", 180.0)

# Request spacing for rate-limited keys. 0 disables spacing.
# Free tier is 15 RPM; paid keys usually don't need this.
REQUESTS_PER_MINUTE = _env_int("REQUESTS_PER_MINUTE", 0)

# Question extraction retry policy (bounded, never a loop without a cap)
QUESTION_MAX_RETRIES = _env_int("QUESTION_MAX_RETRIES", 1)
RETRY_BACKOFF_SECONDS = _env_float("RETRY_BACKOFF_SECONDS", 0.0)

# Concurrent booklet/answer tasks per document
MAX_WORKERS = _env_int("MAX_WORKERS", 4)

# Inline separator replacing line breaks inside oracle string values
ANSWER_SEPARATOR = " | "

# How much raw oracle output to keep in diagnostics / errors
RAW_EXCERPT_CHARS = 300
STRUCTURE_ERROR_EXCERPT_CHARS = 500

# PDF rasterization settings (CLI only, the pipeline receives images)
PDF_DPI = _env_int("PDF_DPI", 200)
PAGE_IMAGE_FORMAT = "JPEG"
PAGE_IMAGE_QUALITY = 85
PAGE_IMAGE_MAX_DIM = 2048

# Section kinds as they appear in header metadata
SECTION_KINDS = ("MCQ", "structured")

# Common booklet prefixes used in multi-paper documents
# Paper 1 keeps plain numbers, later papers get "P2-", "P3-", ...
DEFAULT_PREFIX_PATTERN = r"^(P\d+-|B\d+-)"
