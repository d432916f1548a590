# -*- coding: utf-8 -*-
"""
Gemini Recognition Client - Google Generative AI Integration
Uploads the staged meter photo to the Gemini file API and asks the model
for the numeric value shown on the meter.
"""
import logging
import math
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional

import google.generativeai as genai

from recognition.base import RecognitionClient

logger = logging.getLogger("gemini-recognition")

MEASURE_PROMPT = (
    "This is a photo of a utility meter (water or gas). "
    "Extract only the numeric measurement value shown on the meter, "
    "as a single number. Reply with the number only, no units or text."
)

NUMBER_PATTERN = re.compile(r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")


class RecognitionError(Exception):
    """Gemini returned no usable value or the call itself failed"""


def parse_measure_text(text: Optional[str]) -> float:
    """
    The reply must start with the number, trailing units are ignored.

    Raises RecognitionError for empty, non-numeric or non-finite replies.
    """
    if not text or not text.strip():
        raise RecognitionError("Empty response from recognition model")

    match = NUMBER_PATTERN.match(text.strip())
    if not match:
        raise RecognitionError(f"Non-numeric response from recognition model: {text!r}")

    value = float(match.group())
    if not math.isfinite(value):
        raise RecognitionError(f"Non-finite value from recognition model: {text!r}")
    return value


class GeminiRecognitionClient(RecognitionClient):
    """Gemini backed recognition client"""

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gemini-1.5-flash",
        timeout: float = 60,
    ):
        self.enabled = False
        self.model = None
        self.model_name = model_name
        self.timeout = timeout
        # upload_file takes no timeout, uploads run here so they can be abandoned
        self.upload_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="gemini-upload")

        if not api_key:
            logger.warning("GEMINI_API_KEY not set, Gemini recognition disabled")
            return

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)
        self.enabled = True
        logger.info(f"Gemini recognition initialized with model: {model_name}")

    def _ensure_enabled(self):
        if not self.enabled:
            raise RecognitionError("Gemini recognition not enabled")

    def upload(self, image_path: str, mime_type: str, display_name: str) -> str:
        self._ensure_enabled()

        future = self.upload_executor.submit(
            genai.upload_file, image_path, mime_type=mime_type, display_name=display_name,
        )
        try:
            uploaded = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            raise RecognitionError(f"Gemini upload timed out after {self.timeout}s")

        logger.info(f"Image uploaded to Gemini: {uploaded.uri}")
        return uploaded.uri

    def extract_number(self, image_ref: str, mime_type: str) -> float:
        self._ensure_enabled()

        image_part = {"file_data": {"mime_type": mime_type, "file_uri": image_ref}}
        response = self.model.generate_content(
            [image_part, MEASURE_PROMPT],
            request_options={"timeout": self.timeout},
        )

        try:
            text = response.text
        except ValueError as e:
            # Blocked or empty candidates make .text raise
            raise RecognitionError(f"Gemini returned no text: {e}") from e

        return parse_measure_text(text)
