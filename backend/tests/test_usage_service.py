"""
Button usage ingestion tests: duration derivation, validation and
all-or-nothing bulk writes.
"""

from datetime import datetime

import pytest

from lunebilling.models import UsageRecord
from lunebilling.services import usage_service
from lunebilling.validation import ValidationError


def _entry(device_id, start="2026-09-10T09:00:00Z", end="2026-09-10T09:10:00Z", button=1):
    return {"device_id": device_id, "button_number": button, "start_time": start, "end_time": end}


class TestComputeDuration:
    def test_whole_seconds(self):
        assert usage_service.compute_duration_seconds(
            datetime(2026, 9, 10, 9, 0, 0), datetime(2026, 9, 10, 9, 5, 0)
        ) == 300

    def test_half_second_rounds_up(self):
        assert usage_service.compute_duration_seconds(
            datetime(2026, 9, 10, 9, 0, 0), datetime(2026, 9, 10, 9, 0, 1, 500000)
        ) == 2

    @pytest.mark.parametrize("end", [datetime(2026, 9, 10, 9, 0, 0), datetime(2026, 9, 10, 8, 59, 0)])
    def test_non_positive_rejected(self, end):
        with pytest.raises(ValidationError, match="End time must be after start time"):
            usage_service.compute_duration_seconds(datetime(2026, 9, 10, 9, 0, 0), end)


class TestRecordUsage:
    def test_records_with_derived_fields(self, make_office, make_device):
        device = make_device(make_office())

        record = usage_service.record_usage(_entry(device.id, button=4))

        assert record.duration_seconds == 600
        assert record.button_number == 4
        assert record.usage_date.isoformat() == "2026-09-10"

    def test_end_before_start_writes_nothing(self, db_session, make_office, make_device):
        device = make_device(make_office())

        with pytest.raises(ValidationError):
            usage_service.record_usage(_entry(device.id, end="2026-09-10T09:00:00Z"))

        assert db_session.query(UsageRecord).count() == 0

    @pytest.mark.parametrize("button", [0, 7, "x", None, True])
    def test_button_range(self, make_office, make_device, button):
        device = make_device(make_office())

        with pytest.raises(ValidationError, match="Button number must be between 1 and 6"):
            usage_service.record_usage(_entry(device.id, button=button))

    def test_deleted_device_rejected(self, make_office, make_device):
        device = make_device(make_office(), is_deleted=True)

        with pytest.raises(usage_service.DeviceNotFoundError):
            usage_service.record_usage(_entry(device.id))

    def test_lune_machine_id_alias(self, make_office, make_device):
        device = make_device(make_office())
        payload = _entry(device.id)
        payload["lune_machine_id"] = payload.pop("device_id")

        assert usage_service.record_usage(payload).device_id == device.id


class TestBulk:
    def test_one_invalid_entry_persists_nothing(self, db_session, make_office, make_device):
        device = make_device(make_office())
        batch = [_entry(device.id) for _ in range(5)]
        batch[2] = _entry(device.id, start="2026-09-10T09:10:00Z", end="2026-09-10T09:00:00Z")

        with pytest.raises(ValidationError, match="index 2"):
            usage_service.record_usage_bulk(batch)

        assert db_session.query(UsageRecord).count() == 0

    def test_unknown_device_persists_nothing(self, db_session, make_office, make_device):
        device = make_device(make_office())
        batch = [_entry(device.id), _entry(999999)]

        with pytest.raises(usage_service.DeviceNotFoundError, match="index 1"):
            usage_service.record_usage_bulk(batch)

        assert db_session.query(UsageRecord).count() == 0

    def test_valid_batch(self, db_session, make_office, make_device):
        device = make_device(make_office())

        records = usage_service.record_usage_bulk([_entry(device.id, button=b) for b in range(1, 6)])

        assert len(records) == 5
        assert db_session.query(UsageRecord).count() == 5

    @pytest.mark.parametrize("payload", [None, [], {"device_id": 1}])
    def test_requires_array(self, payload):
        with pytest.raises(ValidationError, match="Usage data array is required"):
            usage_service.record_usage_bulk(payload)


class TestStats:
    def test_monthly_stats_per_button(self, make_office, make_device, make_usage):
        device = make_device(make_office("Stats Office"))
        make_usage(device, start_time=datetime(2026, 9, 1, 9, 0), seconds=300, button_number=1)
        make_usage(device, start_time=datetime(2026, 9, 2, 9, 0), seconds=500, button_number=1)
        make_usage(device, start_time=datetime(2026, 9, 3, 9, 0), seconds=200, button_number=2)
        make_usage(device, start_time=datetime(2026, 10, 1, 9, 0), seconds=999, button_number=1)

        stats = usage_service.device_monthly_stats(device.id, 2026, 9)

        assert stats["device"]["office_name"] == "Stats Office"
        by_button = {row["button_number"]: row for row in stats["summary"]}
        assert by_button[1]["press_count"] == 2
        assert by_button[1]["total_duration_seconds"] == 800
        assert by_button[1]["min_duration_seconds"] == 300
        assert by_button[1]["max_duration_seconds"] == 500
        assert by_button[2]["press_count"] == 1
        assert len(stats["details"]) == 3

    def test_available_months(self, make_office, make_device, make_usage):
        device = make_device(make_office())
        make_usage(device, start_time=datetime(2026, 8, 5, 9, 0))
        make_usage(device, start_time=datetime(2026, 9, 5, 9, 0))
        make_usage(device, start_time=datetime(2026, 9, 6, 9, 0))

        months = usage_service.available_months(device.id)

        assert {(m["year"], m["month"]): m["usage_count"] for m in months} == {(2026, 8): 1, (2026, 9): 2}

    def test_available_months_newest_first_as_integers(self, make_office, make_device, make_usage):
        device = make_device(make_office())
        make_usage(device, start_time=datetime(2025, 12, 30, 9, 0))
        make_usage(device, start_time=datetime(2026, 1, 2, 9, 0))
        make_usage(device, start_time=datetime(2026, 10, 1, 9, 0))

        months = usage_service.available_months(device.id)

        assert [(m["year"], m["month"]) for m in months] == [(2026, 10), (2026, 1), (2025, 12)]
        assert all(type(m["year"]) is int and type(m["month"]) is int for m in months)

    def test_generate_sample_usage(self, db_session, make_office, make_device):
        device = make_device(make_office())

        created = usage_service.generate_sample_usage(device.id, year=2026, month=2, records_per_day=2, seed=7)

        assert created == 56
        assert db_session.query(UsageRecord).filter_by(device_id=device.id).count() == 56
