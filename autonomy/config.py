"""Settings via pydantic-settings with AUTONOMY_ env prefix.

Inference credentials use validation_alias to read the same unprefixed
env vars (ANTHROPIC_API_KEY, ANTHROPIC_AUTH_TOKEN) the rest of the host
process uses, so a single .env file drives everything.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AUTONOMY_", env_file=".env", populate_by_name=True
    )

    agent_id: str = "autonomy-default"
    agent_name: str = "Agent"
    log_level: str = "info"

    # Loop cadences (seconds)
    autonomous_enabled: bool = True
    trigger_interval: float = Field(10.0, gt=0)
    planning_interval: float = Field(60.0, gt=0)
    replan_trigger_enabled: bool = True

    # Drift thresholds
    subtask_stall_seconds: float | None = 900.0
    plan_stale_seconds: float | None = None  # None disables the stale-plan check

    # Event Bus
    event_bus_enabled: bool = True

    # Persistence (optional durability add-on)
    persistence_enabled: bool = False
    db_url: str = "sqlite+aiosqlite:///./autonomy.db"
    db_pool_size: int = 5
    db_max_overflow: int = 5

    # Decomposition
    decomposer: Literal["template", "llm"] = "template"
    planning_model: str = "claude-sonnet-4-5-20250514"
    max_subtasks: int = Field(5, ge=1)
    api_base_url: str = "https://api.anthropic.com"
    api_timeout: float = 30.0
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    # Dual auth: auth_token (Bearer) takes precedence over api_key (x-api-key)
    anthropic_auth_token: str = Field("", validation_alias="ANTHROPIC_AUTH_TOKEN")

    # External state
    state_window: int = Field(20, ge=1)

    # Runtime
    host: str = "0.0.0.0"
    port: int = 8000

    @model_validator(mode="after")
    def _validate_decomposer(self) -> "Settings":
        if self.decomposer == "llm" and not (
            self.anthropic_api_key or self.anthropic_auth_token
        ):
            raise ValueError(
                "decomposer='llm' needs ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN"
            )
        return self
