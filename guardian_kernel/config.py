"""Process configuration and logging setup."""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from guardian_kernel.models.policy import ProposalPolicy


class Settings(BaseSettings):
    """Runtime settings loaded from GUARDIAN_* environment variables."""

    app_name: str = "Guardian Kernel API"
    db_path: str = ":memory:"
    sweep_schedule: str = "*/5 * * * *"     # Cron expression
    log_level: str = "INFO"

    # Policy windows; the defaults are the dual-approval policy.
    response_window_hours: float = 72
    dispute_window_hours: float = 48
    cooling_period_hours: float = 48
    reproposal_cooldown_days: float = 7
    max_proposals_per_hour: int = 10

    model_config = SettingsConfigDict(
        env_prefix="GUARDIAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def policy(self) -> ProposalPolicy:
        return ProposalPolicy(
            response_window_hours=self.response_window_hours,
            dispute_window_hours=self.dispute_window_hours,
            cooling_period_hours=self.cooling_period_hours,
            reproposal_cooldown_days=self.reproposal_cooldown_days,
            max_proposals_per_window=self.max_proposals_per_hour,
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
