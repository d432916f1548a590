"""
Reading Repository
Persistence boundary for customers and readings.

Each method runs in its own short transaction. The two cross-request rules
live in the database: the unique (customer, type, month) constraint and the
conditional confirm update.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError

from database.db import session_scope
from database.models import Customer, MeasureType, Reading, month_bucket

logger = logging.getLogger("reading-repository")


class DuplicateReadingError(Exception):
    """A reading for the same customer, type and month already exists"""


class ReadingRepository:

    def __init__(self, session_factory):
        self.session_factory = session_factory

    # ------------------------------
    # Customers
    # ------------------------------

    def find_customer_by_code(self, code: str) -> Optional[Customer]:
        with session_scope(self.session_factory) as db:
            return db.query(Customer).filter(Customer.code == code).first()

    def get_or_create_customer(self, code: str) -> Customer:
        """
        Create-or-fetch on the unique customer code.

        A concurrent insert for the same code makes ours fail on the unique
        index; the row written by the other request is then returned.
        """
        customer = self.find_customer_by_code(code)
        if customer:
            return customer

        try:
            with session_scope(self.session_factory) as db:
                customer = Customer(code=code)
                db.add(customer)
                db.flush()
            logger.info(f"Customer created: {code}")
            return customer
        except IntegrityError:
            logger.info(f"Customer {code} created concurrently, fetching existing row")

        customer = self.find_customer_by_code(code)
        if customer is None:
            raise RuntimeError(f"Customer {code} vanished after unique violation")
        return customer

    # ------------------------------
    # Readings
    # ------------------------------

    def find_reading_in_window(
        self,
        customer_id: int,
        measure_type: MeasureType,
        start: datetime,
        end: datetime,
    ) -> Optional[Reading]:
        with session_scope(self.session_factory) as db:
            return db.query(Reading).filter(
                Reading.customer_id == customer_id,
                Reading.measure_type == measure_type,
                Reading.measure_datetime >= start,
                Reading.measure_datetime < end,
            ).first()

    def create_reading(
        self,
        customer_id: int,
        measure_type: MeasureType,
        measure_datetime: datetime,
        image_url: str,
        measure: float,
    ) -> Reading:
        try:
            with session_scope(self.session_factory) as db:
                reading = Reading(
                    customer_id=customer_id,
                    measure_type=measure_type,
                    measure_datetime=measure_datetime,
                    measure_period=month_bucket(measure_datetime),
                    image_url=image_url,
                    measure=measure,
                    confirmed=False,
                )
                db.add(reading)
                db.flush()
                return reading
        except IntegrityError as e:
            raise DuplicateReadingError(str(e)) from e

    def find_reading_by_id(self, reading_id: str) -> Optional[Reading]:
        with session_scope(self.session_factory) as db:
            return db.query(Reading).filter(Reading.id == reading_id).first()

    def confirm_reading(self, reading_id: str, confirmed_value: float) -> bool:
        """
        Conditional update: only an unconfirmed reading is touched.

        Returns False when the row was already confirmed (or is gone).
        """
        with session_scope(self.session_factory) as db:
            updated = db.query(Reading).filter(
                Reading.id == reading_id,
                Reading.confirmed.is_(False),
            ).update(
                {Reading.confirmed: True, Reading.measure: confirmed_value},
                synchronize_session=False,
            )
            return updated == 1

    def list_readings(
        self,
        customer_id: int,
        measure_type: Optional[MeasureType] = None,
    ) -> List[Reading]:
        with session_scope(self.session_factory) as db:
            query = db.query(Reading).filter(Reading.customer_id == customer_id)
            if measure_type is not None:
                query = query.filter(Reading.measure_type == measure_type)
            return query.order_by(desc(Reading.created_at), desc(Reading.id)).all()
