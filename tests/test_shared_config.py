import pytest


def test_defaults_with_empty_environment():
    from shared_config import DEFAULT_FALLBACK_IMAGE_URL, SystemConfig

    config = SystemConfig.load(env={})

    assert config.messaging.base_url == "https://api.intercom.io"
    assert config.messaging.page_size == 150
    assert config.messaging.max_pages == 0
    assert config.messaging.pagination_delay == 0.3
    assert config.audience.activity_days == 30
    assert config.audience.run_mode == "all_users"
    assert config.audience.policy == "segment_then_recency"
    assert config.delivery.concurrency == 5
    assert config.delivery.send_delay == 0.2
    assert config.media.fallback_image_url == DEFAULT_FALLBACK_IMAGE_URL
    assert config.scheduler.cron == "0 0 * * *"
    assert config.scheduler.port == 3000
    assert config.dry_run is False
    assert config.dead_letter_table == ""


def test_missing_credentials_do_not_fail_loading():
    from shared_config import SystemConfig

    config = SystemConfig.load(env={})
    assert config.messaging.auth_token == ""
    assert config.messaging.sender_id == ""


def test_environment_values_are_parsed():
    from shared_config import SystemConfig

    config = SystemConfig.load(env={
        "INTERCOM_TOKEN": "tok",
        "INTERCOM_ADMIN_ID": "42",
        "DRY_RUN": "TRUE",
        "MAX_USERS": "25",
        "MAX_PAGES": "3",
        "ACTIVITY_DAYS": "7",
        "RUN_MODE": "Active_Users",
        "ACTIVE_AUDIENCE_POLICY": "recency_only",
        "TEST_USER_IDS": " a1, b2 ,,c3 ",
        "BATCH_CONCURRENCY": "8",
        "SEND_DELAY": "0",
        "GITHUB_ACTIONS": "true",
    })

    assert config.messaging.auth_token == "tok"
    assert config.messaging.sender_id == "42"
    assert config.dry_run is True
    assert config.audience.max_users == 25
    assert config.messaging.max_pages == 3
    assert config.audience.activity_days == 7
    assert config.audience.run_mode == "active_users"
    assert config.audience.policy == "recency_only"
    assert config.audience.test_user_ids == ["a1", "b2", "c3"]
    assert config.delivery.concurrency == 8
    assert config.delivery.send_delay == 0.0
    assert config.log_to_file is True


@pytest.mark.parametrize("env", [
    {"MAX_USERS": "lots"},
    {"PAGE_SIZE": "0"},
    {"BATCH_CONCURRENCY": "0"},
    {"SEND_DELAY": "-1"},
    {"RUN_MODE": "everyone"},
    {"ACTIVE_AUDIENCE_POLICY": "all_users"},
    {"SCHEDULE_CRON": "daily"},
])
def test_invalid_values_raise_config_error(env):
    from shared.errors import ConfigError
    from shared_config import SystemConfig

    with pytest.raises(ConfigError):
        SystemConfig.load(env=env)


def test_load_reads_dotenv_into_environment(monkeypatch, tmp_path):
    from shared_config import SystemConfig

    env_file = tmp_path / ".env"
    env_file.write_text("INTERCOM_TOKEN=from_file\nMAX_USERS=9\n")
    monkeypatch.delenv("INTERCOM_TOKEN", raising=False)
    monkeypatch.delenv("MAX_USERS", raising=False)

    config = SystemConfig.load(dotenv_path=str(env_file))
    monkeypatch.delenv("INTERCOM_TOKEN", raising=False)
    monkeypatch.delenv("MAX_USERS", raising=False)

    assert config.messaging.auth_token == "from_file"
    assert config.audience.max_users == 9


def test_config_summary_never_logs_full_token(caplog):
    import logging

    from shared_config import SystemConfig

    config = SystemConfig.load(env={"INTERCOM_TOKEN": "dG9rOnN1cGVyc2VjcmV0"})
    with caplog.at_level(logging.INFO):
        config.log_config_summary()

    assert "dG9rO..." in caplog.text
    assert "dG9rOnN1cGVyc2VjcmV0" not in caplog.text


def test_s3_settings_are_read():
    from shared_config import SystemConfig

    assert SystemConfig.load(env={}).media.aws_region == "us-east-1"
    media = SystemConfig.load(env={"S3_BUCKET_NAME": "token-images", "AWS_REGION": "eu-west-1"}).media
    assert media.s3_bucket == "token-images"
    assert media.aws_region == "eu-west-1"
