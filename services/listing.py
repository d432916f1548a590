"""
Reading Listing
Customer readings, optionally filtered by measure type, newest first
"""
import logging
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from services.errors import InternalFailure, InvalidInput, ReadingsNotFound
from services.validation import parse_measure_type_filter

logger = logging.getLogger("reading-listing")


class ReadingQuery:

    def __init__(self, repository):
        self.repository = repository

    def list_readings(self, customer_code: str, measure_type: Optional[str] = None) -> Dict:
        """
        Unknown customers and customers without matching readings are
        reported the same way (ReadingsNotFound).
        """
        try:
            measure_filter = parse_measure_type_filter(measure_type)
        except InvalidInput as e:
            logger.warning(f"Listing rejected for {customer_code}: {e.detail}")
            raise

        try:
            customer = self.repository.find_customer_by_code(customer_code)
            if customer is None:
                logger.info(f"Listing for unknown customer {customer_code}")
                raise ReadingsNotFound()

            readings = self.repository.list_readings(customer.id, measure_filter)
        except SQLAlchemyError as e:
            logger.exception(f"Persistence failure while listing readings for {customer_code}")
            raise InternalFailure(detail=str(e))

        if not readings:
            logger.info(f"No readings for customer {customer_code} (filter={measure_type!r})")
            raise ReadingsNotFound()

        return {
            "customer_code": customer_code,
            "measures": [reading.to_dict() for reading in readings],
        }
