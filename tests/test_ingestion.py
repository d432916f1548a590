import math
import os

import pytest

from services.errors import DuplicateSubmission, InvalidInput, RecognitionFailure

from conftest import make_submission


@pytest.fixture
def pipeline(services):
    return services["ingestion"]


def test_upload_creates_unconfirmed_reading(pipeline, repository, recognition):
    result = pipeline.upload(make_submission())

    assert result["measure_value"] == 123.5
    assert result["image_url"].startswith("https://generativelanguage.googleapis.com/")

    reading = repository.find_reading_by_id(result["measure_uuid"])
    assert reading is not None
    assert reading.confirmed is False
    assert reading.measure == 123.5
    assert reading.measure_period == "2024-08"
    assert reading.image_url == result["image_url"]

    assert len(recognition.upload_calls) == 1
    assert recognition.upload_calls[0]["mime_type"] == "image/png"
    assert recognition.upload_calls[0]["display_name"].startswith("C1_WATER_")
    assert recognition.extract_calls == [(result["image_url"], "image/png")]


def test_customer_created_lazily_once(pipeline, repository):
    assert repository.find_customer_by_code("C9") is None

    pipeline.upload(make_submission(customer_code="C9", measure_type="WATER"))
    pipeline.upload(make_submission(customer_code="C9", measure_type="GAS"))

    customer = repository.find_customer_by_code("C9")
    assert customer is not None
    assert len(repository.list_readings(customer.id)) == 2


def test_same_month_is_rejected_without_recognition_call(pipeline, recognition):
    pipeline.upload(make_submission(measure_datetime="2024-08-15T10:00:00Z"))
    assert len(recognition.upload_calls) == 1

    with pytest.raises(DuplicateSubmission) as exc:
        pipeline.upload(make_submission(measure_datetime="2024-08-20T10:00:00Z"))

    assert exc.value.error_code == "DOUBLE_REPORT"
    assert exc.value.status_code == 409
    assert len(recognition.upload_calls) == 1
    assert len(recognition.extract_calls) == 1


def test_identical_resubmission_is_duplicate(pipeline):
    submission = make_submission()
    pipeline.upload(submission)
    with pytest.raises(DuplicateSubmission):
        pipeline.upload(submission)


def test_other_kind_and_other_month_are_accepted(pipeline, recognition):
    pipeline.upload(make_submission(measure_type="WATER", measure_datetime="2024-08-31T23:59:59Z"))
    pipeline.upload(make_submission(measure_type="GAS", measure_datetime="2024-08-20T10:00:00Z"))
    pipeline.upload(make_submission(measure_type="WATER", measure_datetime="2024-09-01T00:00:00Z"))
    pipeline.upload(make_submission(customer_code="C2", measure_type="WATER", measure_datetime="2024-08-15T10:00:00Z"))

    assert len(recognition.upload_calls) == 4


def test_month_follows_measure_datetime_not_creation_time(pipeline):
    pipeline.upload(make_submission(measure_datetime="2023-01-10T00:00:00Z"))
    pipeline.upload(make_submission(measure_datetime="2023-02-10T00:00:00Z"))

    with pytest.raises(DuplicateSubmission):
        pipeline.upload(make_submission(measure_datetime="2023-01-28T00:00:00Z"))


def test_offset_timestamps_are_bucketed_in_utc(pipeline):
    # 2024-09-01 01:30 at +03:00 is still August in UTC
    pipeline.upload(make_submission(measure_datetime="2024-08-10T12:00:00Z"))
    with pytest.raises(DuplicateSubmission):
        pipeline.upload(make_submission(measure_datetime="2024-09-01T01:30:00+03:00"))


@pytest.mark.parametrize("field", ["imageBase64", "customerCode", "measureType", "measureDatetime"])
def test_missing_field_is_invalid(pipeline, repository, recognition, field):
    submission = make_submission()
    del submission[field]

    with pytest.raises(InvalidInput) as exc:
        pipeline.upload(submission)

    assert exc.value.error_code == "INVALID_DATA"
    assert repository.find_customer_by_code("C1") is None
    assert recognition.upload_calls == []


@pytest.mark.parametrize("measure_type", ["water", "Gas", "ELECTRICITY", "wAtEr"])
def test_unknown_measure_type_is_invalid(pipeline, recognition, measure_type):
    with pytest.raises(InvalidInput):
        pipeline.upload(make_submission(measure_type=measure_type))
    assert recognition.upload_calls == []


@pytest.mark.parametrize("image", ["data:image/gif;base64,R0lGODlh", "aGVsbG8=", "data:image/png;base64,%%%"])
def test_bad_image_is_invalid_and_creates_nothing(pipeline, repository, recognition, image):
    with pytest.raises(InvalidInput) as exc:
        pipeline.upload(make_submission(image=image))

    assert exc.value.error_code == "INVALID_DATA"
    assert repository.find_customer_by_code("C1") is None
    assert recognition.upload_calls == []


def test_non_object_body_is_invalid(pipeline):
    with pytest.raises(InvalidInput):
        pipeline.upload(None)
    with pytest.raises(InvalidInput):
        pipeline.upload(["not", "a", "dict"])


def test_staged_image_removed_after_success(pipeline, recognition, upload_folder):
    pipeline.upload(make_submission())

    assert recognition.upload_calls[0]["exists"] is True
    assert not os.path.exists(recognition.staged_paths[0])
    assert os.listdir(upload_folder) == []


def test_upload_failure_is_recognition_failure(pipeline, repository, recognition, upload_folder):
    recognition.upload_error = TimeoutError("deadline exceeded")

    with pytest.raises(RecognitionFailure) as exc:
        pipeline.upload(make_submission())

    assert exc.value.status_code == 500
    assert "deadline" not in exc.value.description
    assert os.listdir(upload_folder) == []
    customer = repository.find_customer_by_code("C1")
    assert repository.list_readings(customer.id) == []


@pytest.mark.parametrize("value", [math.nan, math.inf, "12a", None, True])
def test_unusable_recognition_value(pipeline, repository, recognition, value):
    recognition.value = value

    with pytest.raises(RecognitionFailure):
        pipeline.upload(make_submission())

    customer = repository.find_customer_by_code("C1")
    assert repository.list_readings(customer.id) == []


def test_extract_error_is_recognition_failure(pipeline, recognition, upload_folder):
    recognition.value = ValueError("Non-numeric response")

    with pytest.raises(RecognitionFailure):
        pipeline.upload(make_submission())

    assert os.listdir(upload_folder) == []


def test_failed_recognition_does_not_block_resubmission(pipeline, recognition):
    recognition.value = ValueError("unreadable")
    with pytest.raises(RecognitionFailure):
        pipeline.upload(make_submission())

    recognition.value = 88
    result = pipeline.upload(make_submission())
    assert result["measure_value"] == 88.0


def test_concurrent_duplicate_lost_at_insert(pipeline, repository, monkeypatch):
    """
    Two submissions that both pass the window lookup: the unique
    (customer, type, month) constraint turns the second insert into a
    duplicate.
    """
    pipeline.upload(make_submission(measure_datetime="2024-08-15T10:00:00Z"))

    monkeypatch.setattr(repository, "find_reading_in_window", lambda *args: None)

    with pytest.raises(DuplicateSubmission):
        pipeline.upload(make_submission(measure_datetime="2024-08-20T10:00:00Z"))

    customer = repository.find_customer_by_code("C1")
    assert len(repository.list_readings(customer.id)) == 1


@pytest.mark.parametrize("measure_datetime", ["9999-12-15T00:00:00Z", "0001-01-01T00:30:00+01:00"])
def test_unrepresentable_datetime_is_invalid(pipeline, repository, recognition, measure_datetime):
    with pytest.raises(InvalidInput) as exc:
        pipeline.upload(make_submission(measure_datetime=measure_datetime))

    assert exc.value.error_code == "INVALID_DATA"
    assert repository.find_customer_by_code("C1") is None
    assert recognition.upload_calls == []


def test_far_dates_inside_range_are_accepted(pipeline):
    pipeline.upload(make_submission(measure_datetime="9999-11-15T00:00:00Z"))
    pipeline.upload(make_submission(measure_datetime="0001-01-01T00:30:00Z"))


def test_overlong_customer_code_is_invalid(pipeline, repository, recognition):
    code = "C" * 101

    with pytest.raises(InvalidInput):
        pipeline.upload(make_submission(customer_code=code))

    assert repository.find_customer_by_code(code) is None
    assert recognition.upload_calls == []

    pipeline.upload(make_submission(customer_code="C" * 100))
