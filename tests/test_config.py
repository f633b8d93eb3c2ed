import pytest
from pydantic import ValidationError
from pydantic_settings import SettingsError

from lockstep.config import EngineSettings


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("COOLDOWN", "COOLDOWNS", "CHUNK_SIZE", "DEFAULT_TIMEOUT"):
        monkeypatch.delenv(f"LOCKSTEP_{name}", raising=False)


class TestEngineSettings:
    def test_defaults_disable_rate_limiting(self):
        # Act
        settings = EngineSettings()

        # Assert
        assert settings.cooldown is None
        assert settings.cooldown_for("anything") is None
        assert settings.chunk_size == 64 * 1024
        assert settings.default_timeout is None

    def test_per_tracker_cooldown_overrides_global(self):
        # Arrange
        settings = EngineSettings(cooldown=1.0, cooldowns={"search": 0.25, "free": 0})

        # Act & Assert
        assert settings.cooldown_for("search") == 0.25
        assert settings.cooldown_for("free") == 0
        assert settings.cooldown_for("other") == 1.0

    def test_negative_cooldown_rejected(self):
        with pytest.raises(ValidationError):
            EngineSettings(cooldown=-1)

    def test_zero_chunk_size_rejected(self):
        with pytest.raises(ValidationError):
            EngineSettings(chunk_size=0)


class TestEnvironmentOverrides:
    def test_reads_prefixed_variables(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("LOCKSTEP_COOLDOWN", "0.5")
        monkeypatch.setenv("LOCKSTEP_CHUNK_SIZE", "1024")
        monkeypatch.setenv("LOCKSTEP_DEFAULT_TIMEOUT", "30")
        monkeypatch.setenv("LOCKSTEP_COOLDOWNS", '{"search": 2}')
        monkeypatch.setenv("LOCKSTEP_UNRELATED", "ignored")

        # Act
        settings = EngineSettings()

        # Assert
        assert settings.cooldown == 0.5
        assert settings.chunk_size == 1024
        assert settings.default_timeout == 30.0
        assert settings.cooldowns == {"search": 2.0}

    def test_keyword_arguments_win_over_environment(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("LOCKSTEP_COOLDOWN", "0.5")

        # Act & Assert
        assert EngineSettings(cooldown=2).cooldown == 2.0

    def test_empty_variable_keeps_default(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("LOCKSTEP_COOLDOWN", "")

        # Act & Assert
        assert EngineSettings().cooldown is None

    def test_invalid_value_raises_validation_error(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("LOCKSTEP_CHUNK_SIZE", "lots")

        # Act & Assert
        with pytest.raises(ValidationError):
            EngineSettings()

    def test_malformed_cooldowns_json_raises_settings_error(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("LOCKSTEP_COOLDOWNS", "{bad")

        # Act & Assert
        with pytest.raises(SettingsError):
            EngineSettings()
