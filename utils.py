from flask import jsonify


def error_response(error_code: str, description: str, status_code: int = 400):
    payload = {"error_code": error_code, "error_description": description}
    return jsonify(payload), status_code
