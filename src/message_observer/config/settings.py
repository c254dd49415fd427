from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic.networks import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from message_observer.config.env_aliases import get_flat_env_settings_source


class _BaseSection(BaseModel):
    model_config = {"extra": "forbid"}


class AwsSettings(_BaseSection):
    region: str = "us-east-1"
    # Custom endpoint, e.g. LocalStack at http://localhost:4566
    endpoint_url: str | None = None
    profile: str | None = None


class QueueSettings(_BaseSection):
    url: str
    # SQS caps long polling at 20 seconds and batches at 10 messages.
    wait_time_seconds: int = Field(default=20, ge=0, le=20)
    max_messages: int = Field(default=10, ge=1, le=10)
    visibility_timeout_seconds: int | None = Field(default=None, ge=0, le=43200)
    delete_after_receive: bool = False

    @field_validator("url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("queue.url must not be empty")
        return stripped


class HarnessSettings(_BaseSection):
    replay_capacity: int = Field(default=100, ge=1, le=100_000)
    poll_backoff_seconds: float = Field(default=0.5, gt=0)
    poll_backoff_max_seconds: float = Field(default=10.0, gt=0)
    default_wait_timeout_seconds: float = Field(default=10.0, ge=0)
    stop_timeout_seconds: float = Field(default=3.0, ge=0)

    @model_validator(mode="after")
    def _backoff_bounds(self) -> HarnessSettings:
        if self.poll_backoff_max_seconds < self.poll_backoff_seconds:
            raise ValueError(
                "harness.poll_backoff_max_seconds must be >= harness.poll_backoff_seconds"
            )
        return self


class TriggerSettings(_BaseSection):
    api_base_url: AnyHttpUrl | None = None
    timeout_seconds: float = Field(default=10.0, gt=0)
    auth_token: SecretStr | None = None
    max_retries: int = Field(default=3, ge=0, le=10)


class ObservabilitySettings(_BaseSection):
    log_level: str = "INFO"
    log_format: str | None = None  # json|human (overrides LOG_FORMAT/env when set)
    json_logs: bool = False

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized in {"json", "human"}:
            return normalized
        raise ValueError("observability.log_format must be 'json' or 'human'")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    aws: AwsSettings = Field(default_factory=AwsSettings)
    queue: QueueSettings
    harness: HarnessSettings = Field(default_factory=HarnessSettings)
    trigger: TriggerSettings = Field(default_factory=TriggerSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Settings:
        """
        Construct Settings from a mapping without reading environment variables.

        Useful in tests where we want to pass nested dicts and keep mypy happy.
        """
        class _InitOnlySettings(Settings):
            @classmethod
            def settings_customise_sources(
                cls,
                settings_cls,
                init_settings,
                env_settings,
                dotenv_settings,
                file_secret_settings,
            ):
                return (init_settings,)

        return _InitOnlySettings(**dict(data))

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            env_settings,
            get_flat_env_settings_source,
            init_settings,
            dotenv_settings,
            file_secret_settings,
        )
