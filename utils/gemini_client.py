"""
Gemini API client used as the pipeline's oracle.

Sends labeled page images plus an instruction to Gemini and returns the raw
response text. Parsing and validation happen in the pipeline, never here.
"""

import logging
import os
import threading
import time
from typing import List, Optional, Sequence

from google import genai
from google.genai import types

from config import (
    GEMINI_API_KEY_ENV,
    GEMINI_MODEL,
    GEMINI_TEMPERATURE,
    ORACLE_TIMEOUT_SECONDS,
    REQUESTS_PER_MINUTE,
)
from utils.oracle import (
    CancelToken,
    LabeledImage,
    OracleError,
    OracleTimeout,
    Turn,
)

logger = logging.getLogger(__name__)

TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded", "504")


class GeminiClient:
    """Oracle implementation backed by the google-genai SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = GEMINI_MODEL,
        temperature: float = GEMINI_TEMPERATURE,
        timeout_seconds: float = ORACLE_TIMEOUT_SECONDS,
        requests_per_minute: int = REQUESTS_PER_MINUTE,
    ):
        """
        Initialize Gemini client.

        Args:
            api_key: Gemini API key. If not provided, reads from GEMINI_API_KEY env var.
            model: Model to use (default: gemini-2.5-flash)
            temperature: Sampling temperature; kept low for layout work
            timeout_seconds: Per-call timeout applied to every request
            requests_per_minute: Spacing between requests, 0 disables it
        """
        self.api_key = api_key or os.environ.get(GEMINI_API_KEY_ENV)
        if not self.api_key:
            raise ValueError(
                "Gemini API key required. Set GEMINI_API_KEY environment variable "
                "or pass api_key parameter. Get a free key at: "
                "https://aistudio.google.com/app/apikey"
            )

        self.client = genai.Client(
            api_key=self.api_key,
            http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
        )
        self.model_name = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.request_delay = 60 / requests_per_minute if requests_per_minute > 0 else 0.0
        self.last_request_time = 0.0
        self._rate_lock = threading.Lock()

    def _rate_limit(self):
        """Enforce request spacing, shared by all threads using this client."""
        if not self.request_delay:
            return
        with self._rate_lock:
            elapsed = time.time() - self.last_request_time
            if elapsed < self.request_delay:
                sleep_time = self.request_delay - elapsed
                logger.info("[Rate limit] Waiting %.1fs...", sleep_time)
                time.sleep(sleep_time)
            self.last_request_time = time.time()

    def _build_contents(
        self,
        images: Sequence[LabeledImage],
        instruction: str,
        history: Sequence[Turn],
    ) -> List[types.Content]:
        parts = []
        for labeled in images:
            parts.append(
                types.Part.from_bytes(
                    data=labeled.image.data, mime_type=labeled.image.mime_type
                )
            )
            parts.append(types.Part.from_text(text=labeled.label))
        parts.append(types.Part.from_text(text=instruction))

        contents = [types.Content(role="user", parts=parts)]
        for turn in history:
            contents.append(
                types.Content(role=turn.role, parts=[types.Part.from_text(text=turn.text)])
            )
        return contents

    def infer(
        self,
        images: Sequence[LabeledImage],
        instruction: str,
        history: Sequence[Turn] = (),
        cancel: Optional[CancelToken] = None,
    ) -> str:
        """
        Send images + instruction (and optional follow-up turns) to Gemini.

        Returns:
            Raw response text

        Raises:
            OracleCancelled: cancel token was set before the call
            OracleTimeout: the call exceeded the configured timeout
            OracleError: any other failure, including an empty response
        """
        if cancel is not None:
            cancel.raise_if_cancelled()
        self._rate_limit()
        if cancel is not None:
            cancel.raise_if_cancelled()

        contents = self._build_contents(images, instruction, history)
        started = time.time()
        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    temperature=self.temperature,
                ),
            )
        except Exception as e:
            message = str(e).lower()
            if any(marker in message for marker in TIMEOUT_MARKERS):
                raise OracleTimeout(
                    f"Gemini call timed out after {time.time() - started:.1f}s: {e}"
                ) from e
            raise OracleError(f"Gemini call failed: {e}") from e

        text = response.text
        if not text:
            raise OracleError("Gemini returned empty response")

        logger.debug(
            "Gemini call: %d images, %d follow-up turns, %.1fs, %d chars",
            len(images), len(history), time.time() - started, len(text),
        )
        return text

    def test_connection(self) -> bool:
        """Test if API connection works."""
        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents="Reply with just 'OK' if you can read this."
            )
            return "OK" in (response.text or "").upper()
        except Exception as e:
            logger.error("Connection test failed: %s", e)
            return False


def create_client(api_key: Optional[str] = None) -> GeminiClient:
    """Factory function to create a GeminiClient."""
    return GeminiClient(api_key=api_key)


if __name__ == "__main__":
    # Quick test
    print("Testing Gemini connection...")
    try:
        client = GeminiClient()
        if client.test_connection():
            print("✓ Gemini API connection successful!")
            print(f"  Model: {client.model_name}")
        else:
            print("✗ Connection test failed")
    except ValueError as e:
        print(f"✗ {e}")
