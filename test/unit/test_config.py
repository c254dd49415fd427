from __future__ import annotations

from pathlib import Path

import pytest

from message_observer.config.load import load_settings
from message_observer.config.settings import Settings
from message_observer.config.validate import ConfigValidationError, validate_settings

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/e2e-test-queue"


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    keys = [
        "CONFIG_PATH",
        "AWS_DEFAULT_REGION",
        "AWS_REGION",
        "AWS_ENDPOINT_URL",
        "AWS_PROFILE",
        "QUEUE_URL",
        "QUEUE_WAIT_TIME_SECONDS",
        "QUEUE_MAX_MESSAGES",
        "QUEUE_VISIBILITY_TIMEOUT_SECONDS",
        "QUEUE_DELETE_AFTER_RECEIVE",
        "HARNESS_REPLAY_CAPACITY",
        "HARNESS_POLL_BACKOFF_SECONDS",
        "HARNESS_POLL_BACKOFF_MAX_SECONDS",
        "API_BASE_URL",
        "API_AUTH_TOKEN",
        "LOG_LEVEL",
        "LOG_FORMAT",
        "LOG_JSON",
        # Deprecated names
        "E2E_TEST_QUEUE_URL",
        "REST_API_URL",
        # Nested form (supported by pydantic-settings)
        "QUEUE__URL",
        "AWS__REGION",
        "HARNESS__REPLAY_CAPACITY",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)


def test_missing_queue_url_fails_with_hint(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)

    with pytest.raises(ConfigValidationError) as exc:
        load_settings()

    msg = str(exc.value)
    assert "queue.url" in msg
    assert "QUEUE_URL" in msg


def test_out_of_range_long_poll_wait_fails_with_hint(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    monkeypatch.setenv("QUEUE_URL", QUEUE_URL)
    monkeypatch.setenv("QUEUE_WAIT_TIME_SECONDS", "30")

    with pytest.raises(ConfigValidationError) as exc:
        load_settings()

    msg = str(exc.value)
    assert "queue.wait_time_seconds" in msg
    assert "0-20 seconds" in msg


def test_flat_env_vars_are_honored(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    monkeypatch.setenv("QUEUE_URL", f"  {QUEUE_URL}  ")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")
    monkeypatch.setenv("AWS_ENDPOINT_URL", "http://localhost:4566")
    monkeypatch.setenv("QUEUE_WAIT_TIME_SECONDS", "5")
    monkeypatch.setenv("QUEUE_DELETE_AFTER_RECEIVE", "true")
    monkeypatch.setenv("HARNESS_REPLAY_CAPACITY", "250")
    monkeypatch.setenv("API_BASE_URL", "https://api.example.local/dev/")
    monkeypatch.setenv("API_AUTH_TOKEN", "id-token")

    settings = load_settings()

    assert settings.queue.url == QUEUE_URL
    assert settings.queue.wait_time_seconds == 5
    assert settings.queue.delete_after_receive is True
    assert settings.aws.region == "eu-west-1"
    assert settings.aws.endpoint_url == "http://localhost:4566"
    assert settings.harness.replay_capacity == 250
    assert str(settings.trigger.api_base_url) == "https://api.example.local/dev/"
    assert settings.trigger.auth_token is not None
    assert settings.trigger.auth_token.get_secret_value() == "id-token"


def test_nested_env_vars_are_honored(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    monkeypatch.setenv("QUEUE__URL", QUEUE_URL)
    monkeypatch.setenv("HARNESS__REPLAY_CAPACITY", "12")

    settings = load_settings()
    assert settings.queue.url == QUEUE_URL
    assert settings.harness.replay_capacity == 12


def test_yaml_loading_works(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "aws:",
                "  region: eu-central-1",
                "queue:",
                f"  url: {QUEUE_URL}",
                "  max_messages: 4",
                "harness:",
                "  replay_capacity: 50",
                "  default_wait_timeout_seconds: 15",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = load_settings(config_path=config_path)
    assert settings.aws.region == "eu-central-1"
    assert settings.queue.url == QUEUE_URL
    assert settings.queue.max_messages == 4
    assert settings.harness.replay_capacity == 50
    assert settings.harness.default_wait_timeout_seconds == 15


def test_env_overrides_yaml(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "queue:\n  url: https://sqs.us-east-1.amazonaws.com/1/from-yaml\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("QUEUE_URL", QUEUE_URL)

    settings = load_settings(config_path=config_path)
    assert settings.queue.url == QUEUE_URL


def test_default_config_path_is_picked_up(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "config.yaml").write_text(
        f"queue:\n  url: {QUEUE_URL}\n", encoding="utf-8"
    )

    assert load_settings().queue.url == QUEUE_URL


def test_dotenv_file_is_loaded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    (tmp_path / ".env").write_text(f"QUEUE_URL={QUEUE_URL}\n", encoding="utf-8")

    assert load_settings().queue.url == QUEUE_URL


def test_explicit_config_path_missing_fails(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    monkeypatch.setenv("QUEUE_URL", QUEUE_URL)
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "missing.yaml"))

    with pytest.raises(ConfigValidationError) as exc:
        load_settings()
    assert "Config file not found" in str(exc.value)


def test_invalid_yaml_fails(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    config_path = tmp_path / "config.yaml"
    config_path.write_text("queue: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigValidationError) as exc:
        load_settings(config_path=config_path)
    assert "Invalid YAML" in str(exc.value)


def test_yaml_root_must_be_mapping(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigValidationError, match="mapping"):
        load_settings(config_path=config_path)


@pytest.mark.parametrize(
    ("section", "values"),
    [
        ("queue", {"wait_time_seconds": 21}),
        ("queue", {"max_messages": 0}),
        ("queue", {"max_messages": 11}),
        ("queue", {"url": "   "}),
        ("harness", {"replay_capacity": 0}),
        ("harness", {"poll_backoff_seconds": 2.0, "poll_backoff_max_seconds": 1.0}),
        ("observability", {"log_format": "xml"}),
    ],
)
def test_out_of_range_values_are_rejected(section: str, values: dict[str, object]) -> None:
    data: dict[str, object] = {"queue": {"url": QUEUE_URL}}
    merged = dict(data.get(section, {}))  # type: ignore[arg-type]
    merged.update(values)
    data[section] = merged

    with pytest.raises(ValueError):
        Settings.from_mapping(data)


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ValueError):
        Settings.from_mapping({"queue": {"url": QUEUE_URL, "colour": "blue"}})


def test_validate_settings_collects_all_issues() -> None:
    settings = Settings.from_mapping(
        {
            "aws": {"region": " ", "endpoint_url": "localhost:4566"},
            "queue": {"url": "sqs://queue", "visibility_timeout_seconds": 5},
            "observability": {"log_level": "chatty"},
        }
    )

    with pytest.raises(ConfigValidationError) as exc:
        validate_settings(settings)

    paths = {issue.path for issue in exc.value.issues}
    assert paths == {
        "aws.region",
        "aws.endpoint_url",
        "queue.url",
        "queue.visibility_timeout_seconds",
        "observability.log_level",
    }


def test_zero_visibility_timeout_is_allowed() -> None:
    settings = Settings.from_mapping({"queue": {"url": QUEUE_URL, "visibility_timeout_seconds": 0}})
    validate_settings(settings)
