"""In-memory stand-ins for aiohttp sessions and the dispatcher, shared by the test suites."""

import asyncio

from ntfy_relay.events import OutboundPost

MSG_ALERT = b'{"id":"1","time":1000,"event":"message","topic":"t","title":"Alert","message":"disk full"}\n'
MSG_PING = b'{"id":"2","time":1001,"event":"message","topic":"t","message":"ping"}\n'
OPEN = b'{"id":"o","time":999,"event":"open","topic":"t"}\n'
KEEPALIVE = b'{"event":"keepalive"}\n'


class FakeContent:
    def __init__(self, lines, error=None, hang=False):
        self._lines = list(lines)
        self._error = error
        self._hang = hang

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for line in self._lines:
            yield line
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()


class FakeResponse:
    def __init__(self, status=200, lines=(), error=None, hang=False):
        self.status = status
        self.content = FakeContent(lines, error, hang)
        self.released = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.released = True
        return False


class FailingRequest:
    def __init__(self, error):
        self._error = error

    async def __aenter__(self):
        raise self._error

    async def __aexit__(self, *exc):
        return False


class FakeSessionFactory:
    """Stands in for aiohttp.ClientSession; serves scripted responses in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.session_kwargs = []

    def __call__(self, **kwargs):
        self.session_kwargs.append(kwargs)
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def get(self, url, headers=None):
        self.requests.append((url, dict(headers or {})))
        outcome = self.outcomes.pop(0) if self.outcomes else FakeResponse(status=503)
        if isinstance(outcome, Exception):
            return FailingRequest(outcome)
        return outcome


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def dispatch(self, event):
        self.events.append(event)

    @property
    def texts(self):
        return [OutboundPost.from_event(e).text for e in self.events]
