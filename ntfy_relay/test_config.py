import pytest

from ntfy_relay import __version__
from ntfy_relay.config import RelaySettings, load_settings

ENV_VARS = (
    "NTFY_DOMAIN", "NTFY_TOPIC", "NTFY_AUTH", "SLACK_WEBHOOK_URL", "LOG_LEVEL",
    "LOG_FORMAT", "RECONNECT_DELAY_SECONDS", "BACKOFF_STRATEGY", "MAX_RETRIES",
    "METRICS_PORT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # keep a developer's .env out of the way
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_reads_environment(clean_env):
    clean_env.setenv("NTFY_DOMAIN", "ntfy.example.com")
    clean_env.setenv("NTFY_TOPIC", "alerts")
    clean_env.setenv("NTFY_AUTH", "tk_secret")
    clean_env.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.com/services/x")
    s = load_settings([])
    assert s.stream_url == "https://ntfy.example.com/alerts/json"
    assert s.stream_headers() == {"Authorization": "Bearer tk_secret"}
    assert s.slack_webhook_url == "https://hooks.slack.com/services/x"


def test_flags_override_environment(clean_env):
    clean_env.setenv("NTFY_DOMAIN", "env.example.com")
    clean_env.setenv("NTFY_TOPIC", "env-topic")
    s = load_settings(["--ntfy-domain", "flag.example.com", "--ntfy-topic", "flag-topic"])
    assert s.ntfy_domain == "flag.example.com"
    assert s.ntfy_topic == "flag-topic"


def test_defaults(clean_env):
    s = load_settings(["--ntfy-topic", "alerts"])
    assert s.ntfy_domain == "ntfy.sh"
    assert s.stream_headers() == {}
    assert s.slack_webhook_url is None
    policy = s.backoff_policy()
    assert policy.base_delay == 30.0
    assert policy.strategy == "fixed"
    assert policy.max_retries is None


def test_empty_token_sends_no_header(clean_env):
    clean_env.setenv("NTFY_AUTH", "")
    s = load_settings(["--ntfy-topic", "alerts"])
    assert s.stream_headers() == {}


def test_backoff_flags(clean_env):
    s = load_settings(
        ["--ntfy-topic", "t", "--backoff", "exponential", "--reconnect-delay", "2", "--max-retries", "5"]
    )
    policy = s.backoff_policy()
    assert policy.strategy == "exponential"
    assert policy.base_delay == 2.0
    assert policy.max_retries == 5


def test_missing_topic_is_usage_error(clean_env, capsys):
    with pytest.raises(SystemExit) as exc:
        load_settings([])
    assert exc.value.code == 2
    assert "ntfy_topic" in capsys.readouterr().err


def test_invalid_value_is_usage_error(clean_env):
    with pytest.raises(SystemExit) as exc:
        load_settings(["--ntfy-topic", "t", "--max-retries", "0"])
    assert exc.value.code == 2


def test_version_flag_exits_before_validation(clean_env, capsys):
    with pytest.raises(SystemExit) as exc:
        load_settings(["-v"])
    assert exc.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_trailing_slash_is_trimmed():
    s = RelaySettings(ntfy_domain="ntfy.example.com/", ntfy_topic="alerts")
    assert s.stream_url == "https://ntfy.example.com/alerts/json"
