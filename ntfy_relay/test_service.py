import asyncio

import pytest

from ntfy_relay import __version__
from ntfy_relay.config import RelaySettings
from ntfy_relay.errors import DeliveryRejectedError, StreamConnectionError
from ntfy_relay.service import RelayService, async_main, main
from ntfy_relay.subscriber import NtfySubscriber
from ntfy_relay.testing import MSG_ALERT, MSG_PING, OPEN, FakeResponse, FakeSessionFactory


@pytest.mark.asyncio
async def test_service_relays_until_stopped():
    factory = FakeSessionFactory(FakeResponse(lines=[OPEN, MSG_ALERT, MSG_PING], hang=True))
    settings = RelaySettings(ntfy_topic="t", slack_webhook_url="https://hooks.example.com/x")
    service = RelayService(settings, session_factory=factory)
    sent = []

    async def fake_deliver(post):
        sent.append(post.text)
        if post.text == "**Alert**: disk full":
            raise DeliveryRejectedError(500)

    service.dispatcher.deliver = fake_deliver

    task = asyncio.create_task(service.run())
    await asyncio.sleep(0.05)
    service.stop()
    await asyncio.wait_for(task, timeout=2)

    # the rejected first message did not stop the second one
    assert sorted(sent) == ["**Alert**: disk full", "ping"]
    assert service.dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_async_main_exits_nonzero_when_retries_exhausted(monkeypatch):
    async def unreachable(self):
        raise StreamConnectionError("down")

    monkeypatch.setattr(NtfySubscriber, "connect_and_stream", unreachable)
    settings = RelaySettings(ntfy_topic="t", max_retries=1, reconnect_delay_seconds=0)

    assert await async_main(settings) == 1


def test_main_version_flag(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--version"])
    assert exc.value.code == 0
    assert capsys.readouterr().out.strip() == __version__
