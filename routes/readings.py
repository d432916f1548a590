"""
Readings API
Upload, confirm and list endpoints for meter readings
"""
import logging

from flask import Blueprint, current_app, jsonify, request

from extensions import limiter
from services.errors import InvalidInput, ReadingError, RecognitionFailure
from utils import error_response

logger = logging.getLogger("readings-api")

readings_bp = Blueprint("readings", __name__)


def _services():
    return current_app.extensions["readings"]


def _upload_rate_limit():
    return current_app.config["UPLOAD_RATE_LIMIT"]


@readings_bp.errorhandler(ReadingError)
def handle_reading_error(e: ReadingError):
    """
    Taxonomy error -> public error body. Internal detail stays in the logs.
    """
    if isinstance(e, RecognitionFailure) or e.status_code >= 500:
        logger.error(f"{request.method} {request.path} failed: {e.error_code} ({e.detail})")
    else:
        logger.info(f"{request.method} {request.path} rejected: {e.error_code} ({e.detail})")
    return error_response(e.error_code, e.description, e.status_code)


@readings_bp.route("/upload", methods=["POST"])
@limiter.limit(_upload_rate_limit)
def upload_reading():
    """
    POST /upload

    Body:
    {
        "imageBase64": "data:image/jpeg;base64,...",
        "customerCode": "12345",
        "measureType": "WATER" | "GAS",
        "measureDatetime": "2024-08-29T14:55:00Z"
    }

    Returns:
    {
        "image_url": "...",
        "measure_value": 42.5,
        "measure_uuid": "e6d4f9e3-..."
    }
    """
    payload = request.get_json(silent=True)
    result = _services()["ingestion"].upload(payload)
    return jsonify(result), 200


@readings_bp.route("/confirm/<reading_id>", methods=["PATCH"])
def confirm_reading(reading_id):
    """
    PATCH /confirm/<id>

    Body: { "confirmed_value": 42 }
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidInput(detail="body is not a JSON object")

    result = _services()["lifecycle"].confirm(reading_id, payload.get("confirmed_value"))
    return jsonify(result), 200


@readings_bp.route("/<customer_code>/list", methods=["GET"])
def list_readings(customer_code):
    """
    GET /<customer_code>/list?measure_type=water
    """
    measure_type = request.args.get("measure_type")
    result = _services()["query"].list_readings(customer_code, measure_type)
    return jsonify(result), 200
