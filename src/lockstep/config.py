"""Engine settings."""

from __future__ import annotations

from pydantic import Field, NonNegativeFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "LOCKSTEP_"


class EngineSettings(BaseSettings):
    """Tunable behaviour of a ``RequestEngine`` and its transport.

    Every field can be overridden from a ``LOCKSTEP_*`` environment
    variable, e.g. ``LOCKSTEP_COOLDOWN=0.5``. ``LOCKSTEP_COOLDOWNS`` holds a
    JSON object of tracker id to seconds. Keyword arguments win over the
    environment, and empty variables are ignored.

    Rate limiting is off unless ``cooldown`` is set or the tracker has an
    entry in ``cooldowns``.

    Raises:
        pydantic.ValidationError: If a value has the wrong type.
        pydantic_settings.SettingsError: If ``LOCKSTEP_COOLDOWNS`` is not
            valid JSON.
    """

    cooldown: NonNegativeFloat | None = None
    """
    Minimum seconds between two requests of the same tracker, applied to
    every tracker without an explicit entry in ``cooldowns``.
    """

    cooldowns: dict[str, NonNegativeFloat] = Field(default_factory=dict)
    """
    Per-tracker cooldown overrides, in seconds.
    """

    chunk_size: PositiveInt = 64 * 1024
    """
    Upload chunk size. Each chunk sent produces one ``Sending`` event.
    """

    default_timeout: NonNegativeFloat | None = None
    """
    Seconds a whole exchange may take when its descriptor does not set a
    timeout. None waits forever.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
    )

    def cooldown_for(self, tracker_id: str) -> float | None:
        """Cooldown for a tracker, or None when it is not rate limited."""
        if tracker_id in self.cooldowns:
            return self.cooldowns[tracker_id]
        return self.cooldown
