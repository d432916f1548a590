"""
Reading Lifecycle Controller
Unconfirmed -> Confirmed, exactly once, with the human supplied value
"""
import logging
import math
from typing import Dict

from sqlalchemy.exc import SQLAlchemyError

from services.errors import AlreadyConfirmed, InternalFailure, InvalidInput, ReadingNotFound

logger = logging.getLogger("reading-lifecycle")


def parse_confirmed_value(value) -> float:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(detail=f"confirmed_value must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidInput(detail=f"confirmed_value must be finite, got {value!r}")
    return float(value)


class LifecycleController:
    """
    Confirmation never calls recognition again: the confirmed value is a
    human override and is stored as given.
    """

    def __init__(self, repository):
        self.repository = repository

    def confirm(self, reading_id: str, confirmed_value) -> Dict:
        try:
            value = parse_confirmed_value(confirmed_value)
        except InvalidInput as e:
            logger.warning(f"Confirmation rejected for {reading_id}: {e.detail}")
            raise

        try:
            reading = self.repository.find_reading_by_id(reading_id)
            if reading is None:
                logger.info(f"Confirmation for unknown reading {reading_id}")
                raise ReadingNotFound()

            # Conditional on confirmed = false, so two racing confirmations
            # cannot both win.
            if not self.repository.confirm_reading(reading_id, value):
                logger.info(f"Reading {reading_id} already confirmed, nothing changed")
                raise AlreadyConfirmed()
        except SQLAlchemyError as e:
            logger.exception(f"Persistence failure while confirming {reading_id}")
            raise InternalFailure(detail=str(e))

        logger.info(f"Reading {reading_id} confirmed with value={value} (recognized={reading.measure})")
        return {"success": True}
