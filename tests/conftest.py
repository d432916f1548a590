import base64
import os

import pytest

from app import create_app
from recognition.base import RecognitionClient

# Smallest valid PNG header is enough, the fake client never decodes it
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00"
PNG_PAYLOAD = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


class FakeRecognitionClient(RecognitionClient):
    """Counts calls and records whether the staged file existed during upload"""

    def __init__(self, value=123.5):
        self.value = value
        self.upload_error = None
        self.upload_calls = []
        self.extract_calls = []
        self.staged_paths = []

    def upload(self, image_path, mime_type, display_name):
        self.staged_paths.append(image_path)
        self.upload_calls.append({
            "exists": os.path.exists(image_path),
            "mime_type": mime_type,
            "display_name": display_name,
        })
        if self.upload_error is not None:
            raise self.upload_error
        return f"https://generativelanguage.googleapis.com/v1beta/files/file-{len(self.upload_calls)}"

    def extract_number(self, image_ref, mime_type):
        self.extract_calls.append((image_ref, mime_type))
        if isinstance(self.value, Exception):
            raise self.value
        return self.value


def make_submission(customer_code="C1", measure_type="WATER", measure_datetime="2024-08-15T10:00:00Z", image=PNG_PAYLOAD):
    return {
        "imageBase64": image,
        "customerCode": customer_code,
        "measureType": measure_type,
        "measureDatetime": measure_datetime,
    }


@pytest.fixture
def recognition():
    return FakeRecognitionClient()


@pytest.fixture
def upload_folder(tmp_path):
    return str(tmp_path / "uploads")


@pytest.fixture
def app(tmp_path, recognition, upload_folder):
    app = create_app(
        config_overrides={
            "TESTING": True,
            "DATABASE_URL": f"sqlite:///{tmp_path / 'readings.db'}",
            "UPLOAD_FOLDER": upload_folder,
            "RATELIMIT_ENABLED": False,
            "SCHEDULER_ENABLED": False,
        },
        recognition_client=recognition,
    )
    yield app
    app.extensions["readings"]["engine"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["readings"]


@pytest.fixture
def repository(services):
    return services["ingestion"].repository
