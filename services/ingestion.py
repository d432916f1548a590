"""
Reading Ingestion Pipeline
Validates a meter photo submission, rejects a second reading for the same
customer, type and month, reads the value through the recognition client and
stores an unconfirmed reading.
"""
import logging
import math
import time
from typing import Dict

from sqlalchemy.exc import SQLAlchemyError

from database.models import CUSTOMER_CODE_MAX_LENGTH
from database.repository import DuplicateReadingError
from services.errors import (
    DuplicateSubmission,
    InternalFailure,
    InvalidInput,
    ReadingError,
    RecognitionFailure,
)
from services.image_store import decode_image_payload
from services.validation import month_window, parse_measure_datetime, parse_measure_type

logger = logging.getLogger("reading-ingestion")

REQUIRED_FIELDS = ("imageBase64", "customerCode", "measureType", "measureDatetime")


class IngestionPipeline:
    """
    Upload flow for a single submission.

    Order matters: everything that can be rejected locally is checked before
    the duplicate-period lookup, and the duplicate-period lookup runs before
    the (paid) recognition call.
    """

    def __init__(self, repository, recognition_client, image_store):
        self.repository = repository
        self.recognition_client = recognition_client
        self.image_store = image_store

    def upload(self, payload) -> Dict:
        """
        Args:
            payload: request body with imageBase64, customerCode,
                measureType and measureDatetime

        Returns:
            {"image_url": str, "measure_value": float, "measure_uuid": str}
        """
        customer_code, measure_type, measure_datetime = self._validate_fields(payload)

        try:
            image_data, mime_type = decode_image_payload(payload["imageBase64"])
        except InvalidInput as e:
            logger.warning(f"Upload rejected, {type(e).__name__}: {e.detail}")
            raise

        customer = self._persist_step(
            "customer resolution",
            self.repository.get_or_create_customer,
            customer_code,
        )

        start, end = month_window(measure_datetime)
        existing = self._persist_step(
            "duplicate period check",
            self.repository.find_reading_in_window,
            customer.id, measure_type, start, end,
        )
        if existing:
            logger.info(
                f"Duplicate reading for customer={customer_code} type={measure_type.value} "
                f"period={start:%Y-%m} (existing={existing.id})"
            )
            raise DuplicateSubmission()

        display_name = f"{customer_code}_{measure_type.value}_{int(time.time() * 1000)}"
        image_ref, measure_value = self._recognize(image_data, mime_type, display_name)

        try:
            reading = self.repository.create_reading(
                customer_id=customer.id,
                measure_type=measure_type,
                measure_datetime=measure_datetime,
                image_url=image_ref,
                measure=measure_value,
            )
        except DuplicateReadingError:
            # Lost the race against a concurrent submission for the same month
            logger.info(
                f"Concurrent duplicate reading for customer={customer_code} "
                f"type={measure_type.value} period={start:%Y-%m}"
            )
            raise DuplicateSubmission()
        except SQLAlchemyError as e:
            logger.exception("Reading could not be persisted after recognition")
            raise InternalFailure(detail=str(e))

        logger.info(
            f"Reading {reading.id} stored for customer={customer_code} "
            f"type={measure_type.value} value={measure_value}"
        )

        return {
            "image_url": reading.image_url,
            "measure_value": reading.measure,
            "measure_uuid": reading.id,
        }

    def _validate_fields(self, payload):
        if not isinstance(payload, dict):
            logger.warning("Upload rejected, invalid field: body is not a JSON object")
            raise InvalidInput(detail="body is not a JSON object")

        missing = [name for name in REQUIRED_FIELDS if not payload.get(name)]
        if missing:
            logger.warning(f"Upload rejected, invalid field: missing {missing}")
            raise InvalidInput(detail=f"missing fields: {missing}")

        customer_code = payload["customerCode"]
        if not isinstance(customer_code, str) or not isinstance(payload["imageBase64"], str):
            logger.warning("Upload rejected, invalid field: customerCode/imageBase64 must be strings")
            raise InvalidInput(detail="customerCode and imageBase64 must be strings")

        if len(customer_code) > CUSTOMER_CODE_MAX_LENGTH:
            logger.warning(f"Upload rejected, invalid field: customerCode longer than {CUSTOMER_CODE_MAX_LENGTH}")
            raise InvalidInput(detail=f"customerCode longer than {CUSTOMER_CODE_MAX_LENGTH} characters")

        try:
            measure_type = parse_measure_type(payload["measureType"])
            measure_datetime = parse_measure_datetime(payload["measureDatetime"])
        except InvalidInput as e:
            logger.warning(f"Upload rejected, invalid field: {e.detail}")
            raise

        return customer_code, measure_type, measure_datetime

    def _persist_step(self, step: str, func, *args):
        try:
            return func(*args)
        except ReadingError:
            raise
        except SQLAlchemyError as e:
            logger.exception(f"Persistence failure during {step}")
            raise InternalFailure(detail=str(e))

    def _recognize(self, image_data: bytes, mime_type: str, display_name: str):
        """
        Stage -> upload -> extract. The staged file is gone once upload
        returns or fails; any provider failure, timeouts included, is a
        RecognitionFailure.
        """
        try:
            with self.image_store.stage(image_data, mime_type) as image_path:
                image_ref = self._call_recognition(
                    "upload", self.recognition_client.upload,
                    image_path, mime_type, display_name,
                )
        except OSError as e:
            logger.exception("Image could not be staged")
            raise InternalFailure(detail=str(e))

        value = self._call_recognition(
            "extract", self.recognition_client.extract_number,
            image_ref, mime_type,
        )

        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            logger.error(f"Recognition returned an unusable value: {value!r}")
            raise RecognitionFailure(detail=f"unusable recognition value: {value!r}")

        return image_ref, float(value)

    def _call_recognition(self, step: str, func, *args):
        try:
            return func(*args)
        except Exception as e:
            logger.exception(f"Recognition {step} failed")
            raise RecognitionFailure(detail=str(e))
