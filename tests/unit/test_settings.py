# =============================================================================
# tests/unit/test_settings.py
# Unit Tests for settings loading and validation
# =============================================================================

from pathlib import Path

import pytest

from agri_core.config import DEFAULT_TRACKED_COLLECTIONS, SyncSettings, load_settings
from agri_core.errors import ConfigurationError

SECRETS = """
[supabase]
url = "https://demo.supabase.co"
key = "anon-key"

[offline_sync]
db_path = "data/from_toml.db"
tracked_collections = ["farm_budget", "yield_tracking"]
max_retries = 7
"""


@pytest.fixture
def secrets_file(tmp_path):
    path = tmp_path / "secrets.toml"
    path.write_text(SECRETS)
    return path


class TestLoadSettings:
    """Layering of defaults, secrets.toml and environment"""

    def test_defaults(self, tmp_path):
        settings = load_settings(secrets_path=tmp_path / "missing.toml", env={})

        assert settings.max_retries == 5
        assert settings.backoff_base_seconds == 300
        assert settings.tracked_collections == list(DEFAULT_TRACKED_COLLECTIONS)
        assert not settings.has_remote

    def test_secrets_file(self, secrets_file):
        settings = load_settings(secrets_path=secrets_file, env={})

        assert settings.supabase_url == "https://demo.supabase.co"
        assert settings.has_remote
        assert settings.db_path == Path("data/from_toml.db")
        assert settings.tracked_collections == ["farm_budget", "yield_tracking"]
        assert settings.max_retries == 7

    def test_environment_wins_over_file(self, secrets_file):
        env = {
            "SUPABASE_URL": "https://other.supabase.co",
            "AGRI_SYNC_MAX_RETRIES": "3",
            "AGRI_SYNC_BACKGROUND_SYNC": "off",
            "AGRI_SYNC_TRACKED_COLLECTIONS": "orders, farm_budget",
            "AGRI_SYNC_BACKOFF_BASE_SECONDS": "60",
        }

        settings = load_settings(secrets_path=secrets_file, env=env)

        assert settings.supabase_url == "https://other.supabase.co"
        assert settings.max_retries == 3
        assert settings.background_sync is False
        assert settings.tracked_collections == ["orders", "farm_budget"]
        assert settings.backoff_base_seconds == 60.0

    def test_overrides_win_over_environment(self, tmp_path):
        settings = load_settings(
            secrets_path=tmp_path / "missing.toml",
            env={"AGRI_SYNC_MAX_RETRIES": "3"},
            max_retries=9,
        )

        assert settings.max_retries == 9

    def test_unparseable_values_raise(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(secrets_path=tmp_path / "missing.toml", env={"AGRI_SYNC_MAX_RETRIES": "many"})

    def test_broken_toml_raises(self, tmp_path):
        path = tmp_path / "secrets.toml"
        path.write_text("[supabase\nurl = ")

        with pytest.raises(ConfigurationError):
            load_settings(secrets_path=path, env={})


class TestValidation:
    """SyncSettings.validate"""

    @pytest.mark.parametrize("changes", [
        {"max_retries": 0},
        {"backoff_base_seconds": 0},
        {"sync_interval": -1},
        {"backoff_base_seconds": 600, "backoff_max_seconds": 300},
        {"tracked_collections": ["Farm Budget"]},
        {"tracked_collections": ["orders", "orders"]},
    ])
    def test_rejects_bad_values(self, changes):
        with pytest.raises(ConfigurationError) as exc_info:
            SyncSettings(**changes).validate()

        assert exc_info.value.code == "CONFIG_001"
        assert not exc_info.value.recoverable
