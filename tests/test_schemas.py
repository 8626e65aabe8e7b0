"""
Test Submission Schema

Fallback rules for optional submission fields.
"""

import pytest
from pydantic import ValidationError

from trustgate.schemas import TelemetrySubmission


def test_empty_submission_resolves_defaults():
    submission = TelemetrySubmission.model_validate({})

    assert submission.resolved_device_id == "unknown"
    assert submission.resolved_group_id == "group-1"
    assert submission.resolved_trust_a == 100
    assert submission.resolved_trust_b == 100
    assert submission.resolved_unix_ts(now=1_700_000_000.7) == 1_700_000_000


def test_group_falls_back_to_device():
    submission = TelemetrySubmission.model_validate({"deviceId": "esp-7"})
    assert submission.resolved_group_id == "esp-7"


@pytest.mark.parametrize("payload, old_ts, new_ts", [
    ({"trustA": 70, "trustB": 40}, 70, 40),
    ({"trustA": 70, "trustB": 40, "oldTrustA": 80, "newTrustA": 65}, 80, 65),
    ({"trustA": 70, "trustB": 40, "oldTrustA": 80, "oldTS": 90, "newTS": 30}, 90, 30),
])
def test_trust_score_resolution(payload, old_ts, new_ts):
    submission = TelemetrySubmission.model_validate(payload)
    assert submission.resolved_old_ts == old_ts
    assert submission.resolved_new_ts == new_ts


def test_millisecond_timestamps_normalized():
    submission = TelemetrySubmission.model_validate({"timestamp": 1_700_000_000_123})
    assert submission.resolved_unix_ts() == 1_700_000_000


def test_rpm_falls_back_to_speed():
    assert TelemetrySubmission.model_validate({"speed": 120}).resolved_speed == 120
    assert TelemetrySubmission.model_validate({"speed": 120, "rpm": 90}).resolved_speed == 90


def test_numeric_ids_and_unknown_fields():
    submission = TelemetrySubmission.model_validate({"deviceId": 42, "firmware": "1.2"})
    assert submission.resolved_device_id == "42"
    assert submission.model_extra == {"firmware": "1.2"}


@pytest.mark.parametrize("payload", [
    {"trustA": 101},
    {"trustB": -1},
    {"trustA": "high"},
    {"ts": -5},
])
def test_invalid_values_rejected(payload):
    with pytest.raises(ValidationError):
        TelemetrySubmission.model_validate(payload)
