"""
Integration settings and sync configuration tests
"""
from datetime import datetime, timedelta

import pytest

from app.services.integration_settings import (
    dump_integration_settings,
    is_pull_due,
    is_within_active_hours,
    merge_integration_settings,
    parse_integration_settings,
    parse_sync_config,
    public_integration_settings,
    validate_integration_settings,
)
from app.services.platform_client import SyncConfigurationError


class TestContificoSettings:
    def test_key_for_selected_env_is_required(self):
        with pytest.raises(SyncConfigurationError):
            validate_integration_settings({"env": "prod", "apiKeys": {"test": "k"}})

    def test_blank_warehouse_means_global_stock(self):
        model = validate_integration_settings({"env": "test", "apiKeys": {"test": "k"}, "warehousePrimary": "  "})
        assert model.warehouse_primary is None

    def test_unknown_type_is_rejected(self):
        with pytest.raises(SyncConfigurationError):
            validate_integration_settings({"type": "sap", "apiKeys": {"prod": "k"}})

    def test_keys_are_encrypted_at_rest(self):
        model = validate_integration_settings({"env": "prod", "apiKeys": {"prod": "secret-key"}, "warehousePrimary": "WH"})

        stored = dump_integration_settings(model)
        loaded = parse_integration_settings(stored)

        assert stored["apiKeys"]["prod"] != "secret-key"
        assert stored["apiKeys"]["test"] is None
        assert loaded.api_key == "secret-key"
        assert loaded.warehouse_primary == "WH"

    def test_public_view_hides_key_material(self):
        stored = dump_integration_settings(validate_integration_settings({"env": "prod", "apiKeys": {"prod": "secret-key"}}))

        public = public_integration_settings(stored)

        assert public["apiKeys"] == {"test": False, "prod": True}
        assert "secret-key" not in str(public)

    def test_undecryptable_key_is_a_configuration_error(self):
        with pytest.raises(SyncConfigurationError):
            parse_integration_settings({"env": "prod", "apiKeys": {"prod": "not-a-token"}})


class TestMergeSettings:
    @pytest.fixture
    def stored(self):
        return dump_integration_settings(validate_integration_settings({
            "env": "prod", "apiKeys": {"prod": "prod-key", "test": "test-key"}, "warehousePrimary": "WH-1",
        }))

    def test_omitted_keys_are_kept(self, stored):
        merged = merge_integration_settings(stored, {"warehousePrimary": "WH-2"})

        assert merged.api_key == "prod-key"
        assert merged.api_keys.test == "test-key"
        assert merged.warehouse_primary == "WH-2"

    def test_switching_env_uses_the_other_key(self, stored):
        merged = merge_integration_settings(stored, {"env": "test"})

        assert merged.api_key == "test-key"
        assert merged.warehouse_primary == "WH-1"

    def test_empty_string_clears_a_key(self, stored):
        merged = merge_integration_settings(stored, {"apiKeys": {"test": ""}})

        assert merged.api_keys.test is None
        assert merged.api_key == "prod-key"

    def test_clearing_the_active_key_is_rejected(self, stored):
        with pytest.raises(SyncConfigurationError):
            merge_integration_settings(stored, {"apiKeys": {"prod": ""}})


class TestSyncConfig:
    def test_defaults(self):
        config = parse_sync_config(None)

        assert config.pull.enabled is False
        assert config.pull.interval == "hourly"
        assert config.schedule.active_hours is None

    @pytest.mark.parametrize("data", [
        {"pull": {"interval": "every-minute"}},
        {"schedule": {"activeHours": {"start": "25:00", "end": "06:00"}}},
        {"schedule": {"activeHours": {"start": "8:00", "end": "18:00"}}},
    ])
    def test_invalid_config_is_rejected(self, data):
        with pytest.raises(SyncConfigurationError):
            parse_sync_config(data)

    def test_json_round_trip_keeps_aliases(self):
        data = {"pull": {"enabled": True, "interval": "daily"}, "schedule": {"activeHours": {"start": "08:00", "end": "18:00"}}}

        assert parse_sync_config(data).to_json()["schedule"]["activeHours"] == {"start": "08:00", "end": "18:00"}


class TestActiveHours:
    def window(self, start, end, tz=None):
        schedule = {"activeHours": {"start": start, "end": end}}
        if tz:
            schedule["timezone"] = tz
        return parse_sync_config({"schedule": schedule})

    def test_no_window_is_always_active(self):
        assert is_within_active_hours(parse_sync_config({}), datetime(2026, 1, 1, 3, 0))

    def test_daytime_window(self):
        config = self.window("08:00", "18:00")

        assert is_within_active_hours(config, datetime(2026, 1, 1, 8, 0))
        assert is_within_active_hours(config, datetime(2026, 1, 1, 18, 0))
        assert not is_within_active_hours(config, datetime(2026, 1, 1, 18, 1))

    def test_overnight_window(self):
        config = self.window("22:00", "06:00")

        assert is_within_active_hours(config, datetime(2026, 1, 1, 23, 30))
        assert is_within_active_hours(config, datetime(2026, 1, 1, 5, 59))
        assert not is_within_active_hours(config, datetime(2026, 1, 1, 12, 0))

    def test_window_in_store_timezone(self):
        # Guayaquil is UTC-5 with no DST
        config = self.window("08:00", "18:00", tz="America/Guayaquil")

        assert is_within_active_hours(config, datetime(2026, 1, 1, 14, 0))
        assert not is_within_active_hours(config, datetime(2026, 1, 1, 7, 0))


class TestPullDue:
    def test_never_pulled_is_due(self):
        assert is_pull_due(parse_sync_config({}), None, datetime(2026, 1, 1))

    @pytest.mark.parametrize("interval,elapsed,due", [
        ("5min", timedelta(minutes=4), False),
        ("5min", timedelta(minutes=5), True),
        ("hourly", timedelta(minutes=59), False),
        ("daily", timedelta(hours=24), True),
        ("weekly", timedelta(days=6), False),
    ])
    def test_interval(self, interval, elapsed, due):
        now = datetime(2026, 1, 8, 12, 0)
        config = parse_sync_config({"pull": {"enabled": True, "interval": interval}})

        assert is_pull_due(config, now - elapsed, now) is due
