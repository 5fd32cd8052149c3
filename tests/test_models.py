"""Tests for src.data.models — settings and nutrition data models."""

import pytest
from pydantic import ValidationError

from src.data.models import EDITABLE_FIELDS, DailyTotals, NotificationSettings


class TestNotificationSettings:
    def test_defaults(self):
        s = NotificationSettings(user_id=12345)
        assert s.user_id == "12345"
        assert s.breakfast_time == "08:00:00"
        assert s.snack_time is None
        assert s.water_reminder_frequency == 120
        assert s.push_enabled is True

    def test_hh_mm_padded_to_storage_form(self):
        s = NotificationSettings(user_id="1", lunch_time="12:30")
        assert s.lunch_time == "12:30:00"

    def test_assignment_is_validated(self):
        s = NotificationSettings(user_id="1")
        s.dinner_time = "18:15"
        assert s.dinner_time == "18:15:00"
        with pytest.raises(ValidationError):
            s.dinner_time = "25:00"

    def test_blank_time_clears(self):
        s = NotificationSettings(user_id="1", snack_time="  ")
        assert s.snack_time is None

    def test_invalid_time_rejected(self):
        with pytest.raises(ValidationError):
            NotificationSettings(user_id="1", breakfast_time="breakfast")

    def test_display_times(self):
        s = NotificationSettings(user_id="1", snack_time="16:00")
        times = s.display_times()
        assert times["breakfast_time"] == "08:00"
        assert times["snack_time"] == "16:00"
        assert times["daily_stats_time"] == "20:00"

    def test_editable_fields_exclude_identity(self):
        assert "user_id" not in EDITABLE_FIELDS
        assert "push_token" not in EDITABLE_FIELDS
        assert "breakfast_time" in EDITABLE_FIELDS


class TestDailyTotals:
    def test_to_context_rounds(self):
        totals = DailyTotals(
            date="2024-01-01", calories=1234.6, protein=50.04, fat=40.06,
            carbs=150.0, water_ml=1500, meals=["Oatmeal"],
        )
        assert totals.to_context() == {
            "date": "2024-01-01",
            "calories": 1235,
            "protein": 50.0,
            "fat": 40.1,
            "carbs": 150.0,
            "water": 1500,
            "meals": ["Oatmeal"],
        }
