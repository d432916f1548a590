"""
Reading Errors
Failure taxonomy shared by the ingestion, confirmation and listing services.

Every error carries the public error code and description returned to the
caller; internal detail only goes to the logs.
"""


class ReadingError(Exception):
    """Base class for every failure a reading operation can report"""

    error_code = "INTERNAL_ERROR"
    description = "An unexpected error occurred."
    status_code = 500

    def __init__(self, description: str = None, detail: str = None):
        self.description = description or self.description
        self.detail = detail
        super().__init__(detail or self.description)

    def to_dict(self) -> dict:
        return {
            "error_code": self.error_code,
            "error_description": self.description,
        }


class InvalidInput(ReadingError):
    error_code = "INVALID_DATA"
    description = "Incomplete or invalid data."
    status_code = 400


class InvalidMeasureType(InvalidInput):
    """Listing filter outside the known measure types"""
    error_code = "INVALID_TYPE"
    description = "Measure type not allowed."


class NotFound(ReadingError):
    error_code = "NOT_FOUND"
    description = "Resource not found."
    status_code = 404


class ReadingNotFound(NotFound):
    error_code = "MEASURE_NOT_FOUND"
    description = "Reading not found."


class ReadingsNotFound(NotFound):
    error_code = "MEASURES_NOT_FOUND"
    description = "No readings found."


class Conflict(ReadingError):
    error_code = "CONFLICT"
    description = "Conflicting state."
    status_code = 409


class DuplicateSubmission(Conflict):
    error_code = "DOUBLE_REPORT"
    description = "Reading for this month has already been submitted."


class AlreadyConfirmed(Conflict):
    error_code = "CONFIRMATION_DUPLICATE"
    description = "Reading has already been confirmed."


class RecognitionFailure(ReadingError):
    """External recognition returned nothing usable, failed or timed out"""
    error_code = "RECOGNITION_FAILURE"
    description = "The meter value could not be read from the image."
    status_code = 500


class InternalFailure(ReadingError):
    error_code = "INTERNAL_ERROR"
    description = "An unexpected error occurred. Please try again."
    status_code = 500
