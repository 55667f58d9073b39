"""
Relay configuration.

Every setting can come from a command-line flag, an environment variable
(same name, upper case) or a ``.env`` file. Flags win over the environment.
"""

import argparse
from typing import Dict, List, Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from . import __version__
from .backoff import BackoffPolicy

UPSTREAM_NTFY_SERVER = "ntfy.sh"


class RelaySettings(BaseSettings):
    """Configuration options for the relay service."""

    ntfy_domain: str = UPSTREAM_NTFY_SERVER
    ntfy_topic: str
    ntfy_auth: Optional[str] = None  # Optional token for reserved topics
    slack_webhook_url: Optional[str] = None
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"

    # Reconnect behaviour
    reconnect_delay_seconds: float = Field(30.0, ge=0)
    backoff_strategy: Literal["fixed", "exponential"] = "fixed"
    backoff_max_seconds: float = Field(300.0, ge=0)
    backoff_jitter: float = Field(0.0, ge=0, le=1)
    max_retries: Optional[int] = Field(None, ge=1)  # None keeps retrying forever
    ntfy_read_timeout: Optional[float] = Field(None, gt=0)

    # Delivery
    delivery_timeout_seconds: float = Field(10.0, gt=0)
    max_concurrent_deliveries: Optional[int] = Field(None, ge=1)
    shutdown_grace_seconds: float = Field(10.0, ge=0)

    metrics_port: Optional[int] = Field(None, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    @field_validator("ntfy_domain", "ntfy_topic")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def stream_url(self) -> str:
        return f"https://{self.ntfy_domain}/{self.ntfy_topic}/json"

    def stream_headers(self) -> Dict[str, str]:
        if self.ntfy_auth:
            return {"Authorization": f"Bearer {self.ntfy_auth}"}
        return {}

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay=self.reconnect_delay_seconds,
            strategy=self.backoff_strategy,
            max_delay=self.backoff_max_seconds,
            jitter=self.backoff_jitter,
            max_retries=self.max_retries,
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Relay messages from an ntfy topic to a Slack webhook",
        prog="ntfy-slack-relay",
    )
    parser.add_argument(
        "--ntfy-domain",
        dest="ntfy_domain",
        help=f"ntfy server to subscribe to. Defaults to {UPSTREAM_NTFY_SERVER} or NTFY_DOMAIN",
    )
    parser.add_argument(
        "--ntfy-topic",
        dest="ntfy_topic",
        help="ntfy topic to subscribe to. Defaults to NTFY_TOPIC",
    )
    parser.add_argument(
        "--ntfy-auth",
        dest="ntfy_auth",
        help="Access token for reserved topics. Defaults to NTFY_AUTH",
    )
    parser.add_argument(
        "--slack-webhook",
        dest="slack_webhook_url",
        help="Slack webhook URL to send messages to. Defaults to SLACK_WEBHOOK_URL",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        help="debug, info, warn or error. Defaults to LOG_LEVEL or info",
    )
    parser.add_argument(
        "--log-format",
        dest="log_format",
        choices=["text", "json"],
        help="Log output format. Defaults to LOG_FORMAT or text",
    )
    parser.add_argument(
        "--reconnect-delay",
        dest="reconnect_delay_seconds",
        type=float,
        help="Seconds to wait before reconnecting. Defaults to 30",
    )
    parser.add_argument(
        "--backoff",
        dest="backoff_strategy",
        choices=["fixed", "exponential"],
        help="Reconnect delay strategy. Defaults to fixed",
    )
    parser.add_argument(
        "--max-retries",
        dest="max_retries",
        type=int,
        help="Give up after this many consecutive failed connections. Defaults to never",
    )
    parser.add_argument(
        "--metrics-port",
        dest="metrics_port",
        type=int,
        help="Expose Prometheus metrics on this port",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=__version__,
        help="Print the relay version and exit",
    )
    return parser


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        field = ".".join(str(loc) for loc in err["loc"])
        parts.append(f"{field}: {err['msg']}")
    return "; ".join(parts)


def load_settings(argv: Optional[List[str]] = None) -> RelaySettings:
    """Parse flags and merge them over environment settings."""
    parser = build_parser()
    args = parser.parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    try:
        return RelaySettings(**overrides)
    except ValidationError as e:
        parser.error(f"invalid configuration: {_describe(e)}")
