from reviewbot.config import BotConfig
from reviewbot.main import build_config, parse_args


def test_defaults(monkeypatch):
    for name in ("DAILY_MESSAGE_LIMIT", "SESSION_TIMEOUT_MINUTES", "STORE_BACKEND", "LOCAL_TIMEOUT_TIMERS"):
        monkeypatch.delenv(name, raising=False)

    config = BotConfig.from_env()

    assert config.daily_message_limit == 100
    assert config.lifetime_message_limit == 3000
    assert config.session_timeout_s == 1800
    assert config.store_backend == "redis"
    assert config.local_timeout_timers is False


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DAILY_MESSAGE_LIMIT", "5")
    monkeypatch.setenv("QUOTA_TIMEZONE", "Asia/Kolkata")
    monkeypatch.setenv("SESSION_TIMEOUT_MINUTES", "10")
    monkeypatch.setenv("TIMEOUT_WARNING_MINUTES", "2")
    monkeypatch.setenv("LOCAL_TIMEOUT_TIMERS", "yes")

    config = BotConfig.from_env()

    assert config.quota().daily_limit == 5
    assert config.quota().timezone == "Asia/Kolkata"
    assert config.timeouts().inactivity_window_s == 600
    assert config.timeouts().warning_lead_s == 120
    assert config.local_timeout_timers is True


def test_cli_flags_override_environment(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "redis")
    monkeypatch.setenv("REDIS_URL", "redis://env:6379/0")

    config = build_config(parse_args(["--store-backend", "memory", "--catalog", "courses.json"]))

    assert config.store_backend == "memory"
    assert config.course_catalog_path == "courses.json"
    assert config.redis_url == "redis://env:6379/0"
