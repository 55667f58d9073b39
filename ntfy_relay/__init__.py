"""
ntfy to Slack relay.

This package keeps a streaming subscription to an ntfy topic open and
forwards every message event to a Slack incoming webhook:
- Subscription loop with reconnect backoff
- Fire-and-forget webhook delivery
- Settings from flags, environment variables or a .env file
"""

__version__ = "1.3.0"
