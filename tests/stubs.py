"""Offline stand-ins for the transport and the sandbox host."""
from hopchain.providers.base import SandboxRun, SandboxStatus, TrapEntry, TrapKind, TrapLog
from hopchain.providers.fetcher import FetchResponse


class StubTransport:
    """Serves canned responses by exact URL. Unknown URLs answer 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    async def fetch(self, url, headers=None):
        self.calls.append((url, dict(headers or {})))
        route = self.routes.get(url)
        if route is None:
            return FetchResponse(status=404, body="not found", url=url)
        if isinstance(route, Exception):
            raise route
        status, body = route
        return FetchResponse(status=status, body=body, url=url)

    def headers_for(self, url):
        for called, headers in self.calls:
            if called == url:
                return headers
        raise AssertionError(f"{url} was never fetched")


class FakeSandbox:
    """Pretends the decoder assigned ``value`` to window[<identifier>]."""

    def __init__(self, value=None, status=SandboxStatus.COMPLETED, error=None):
        self.value = value
        self.status = status
        self.error = error
        self.snippets = []

    def run(self, snippet, bundle, timeout_ms=None):
        self.snippets.append(snippet)
        entries = []
        if self.value is not None:
            entries.append(TrapEntry(kind=TrapKind.SET, name=bundle.identifier,
                                     value_type="string", value=self.value))
        return SandboxRun(status=self.status, trap_log=TrapLog(entries), error=self.error)
