from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field


class Settings(BaseModel):
    env: Literal["dev", "test", "staging", "prod"] = Field(
        default="dev", description="Deployment environment label"
    )

    # Job execution
    job_timeout_s: int = Field(default=1200, description="Hard wall-clock limit for one content request job")
    provider_timeout_s: float = Field(default=300.0, description="Per-call timeout for provider HTTP requests")
    fanout_workers: int = Field(default=4, ge=1, description="Max concurrent generation tasks per request")
    poll_interval_s: float = Field(default=2.0, description="Delay between status polls for async providers")
    poll_attempts: int = Field(default=60, description="Max status polls before an async provider call fails")
    result_ttl_days: int = Field(default=365)

    # Provider credentials and endpoints
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    gemini_api_key: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    stable_diffusion_api_key: str | None = None
    stable_diffusion_base_url: str = "https://stablediffusionapi.com/api/v3"
    stability_api_key: str | None = None
    stability_base_url: str = "https://api.stability.ai/v1"
    leonardo_api_key: str | None = None
    leonardo_base_url: str = "https://cloud.leonardo.ai/api/rest/v1"
    elevenlabs_api_key: str | None = None
    elevenlabs_base_url: str = "https://api.elevenlabs.io/v1"
    elevenlabs_default_voice: str = "21m00Tcm4TlvDq8ikWAM"
    openai_default_voice: str = "alloy"

    # Comma-separated model names that take structured text+image prompts
    vision_models: str = "gpt-4-vision-preview,gpt-4o,gpt-4o-mini,gpt-4-turbo"

    # Retrieval/training service
    trainer_base_url: str | None = None
    trainer_api_key: str | None = None

    # Notifications
    plans_url: str = "/plans"
    default_locale: str = "en"

    def vision_model_set(self) -> set[str]:
        return {m.strip() for m in self.vision_models.split(",") if m.strip()}


_ENV_PREFIX = "CF_"


def _from_env(environ: dict[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in Settings.model_fields:
        raw = environ.get(f"{_ENV_PREFIX}{name.upper()}")
        if raw is not None and raw != "":
            values[name] = raw
    return values


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Pydantic coerces the string env values; call get_settings.cache_clear() after changing env
    return Settings(**_from_env(dict(os.environ)))
