from edgegate.config.routes import build_route_table
from edgegate.config.settings import Settings, load_settings

ENV_VARS = [
    "ADMISSION_SERVICE_URL", "ADMISSION_TIMEOUT", "ADMISSION_FAIL_OPEN_UNCLASSIFIED",
    "ORIGIN_URL", "REDIS_HOST", "REDIS_PORT", "OVERLOAD_LIMIT", "OVERLOAD_WINDOW_MS",
    "LOG_LEVEL", "LISTEN_HOST", "LISTEN_PORT",
]


def test_defaults(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    assert load_settings() == Settings()
    assert Settings().admission_timeout is None
    assert Settings().fail_open_on_unclassified is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ADMISSION_SERVICE_URL", "http://10.0.0.2:18080")
    monkeypatch.setenv("ADMISSION_TIMEOUT", "2.5")
    monkeypatch.setenv("ADMISSION_FAIL_OPEN_UNCLASSIFIED", "false")
    monkeypatch.setenv("REDIS_HOST", "redis")
    monkeypatch.setenv("OVERLOAD_LIMIT", "20")

    settings = load_settings()

    assert settings.admission_service_url == "http://10.0.0.2:18080"
    assert settings.admission_timeout == 2.5
    assert settings.fail_open_on_unclassified is False
    assert settings.redis_host == "redis"
    assert settings.overload_limit == 20


def test_route_table_points_everything_at_origin():
    table = build_route_table("http://origin:5001")
    assert table["/"]["backend"] == "http://origin:5001"
