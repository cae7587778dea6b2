from hopchain.core.config import DEFAULT_UA, Settings


def test_defaults(monkeypatch):
    for name in ("HOPCHAIN_HTTP_TIMEOUT", "HOPCHAIN_ENABLE_SANDBOX", "HOPCHAIN_USER_AGENT",
                 "HOPCHAIN_MAX_CONCURRENCY", "HOPCHAIN_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.http_timeout == 12
    assert settings.sandbox_enabled is True
    assert settings.user_agent == DEFAULT_UA
    assert settings.log_level == "INFO"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("HOPCHAIN_ENABLE_SANDBOX", "false")
    monkeypatch.setenv("HOPCHAIN_SANDBOX_TIMEOUT_MS", "750")
    monkeypatch.setenv("HOPCHAIN_MAX_CONCURRENCY", "0")
    monkeypatch.setenv("HOPCHAIN_LOG_LEVEL", "debug")
    settings = Settings.from_env()
    assert settings.sandbox_enabled is False
    assert settings.sandbox_timeout_ms == 750
    assert settings.max_concurrency == 1
    assert settings.log_level == "DEBUG"


def test_bad_integer_falls_back(monkeypatch):
    monkeypatch.setenv("HOPCHAIN_TRAP_LOG_LIMIT", "lots")
    assert Settings.from_env().trap_log_limit == 5000
