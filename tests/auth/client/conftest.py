import asyncio
import concurrent.futures
import time
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from quickcal.auth.client.services.cancellation import CancellationRegistry
from quickcal.auth.client.services.credentials import CredentialStore
from quickcal.auth.config import AuthSettings

FIXED_NOW = 1_700_000_000.0


class InMemoryKeyring:
    """Keyring backend double with the same error behavior as real backends."""

    def __init__(self):
        self.entries: dict[tuple[str, str], str] = {}
        self.unavailable = False

    def _check(self) -> None:
        if self.unavailable:
            raise KeyringError("Secret Service is not available")

    def get_password(self, service: str, username: str) -> str | None:
        self._check()
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self._check()
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        self._check()
        if (service, username) not in self.entries:
            raise PasswordDeleteError("Password not found")
        del self.entries[(service, username)]


class FakeBrowser:
    """Stands in for the system browser and the provider's consent screen.

    It is called from a worker thread, like ``webbrowser.open``. Modes:
    - "approve": redirects back with code "abc" and the issued state
    - "forge": redirects back with a state that was never issued
    - "deny": redirects back with error=access_denied
    - "ignore": never comes back
    - "broken": reports that no browser could be opened
    - "console": loads the redirect synchronously and only returns once the
      page has been received, like a terminal browser
    - "stall": blocks for ``stall_seconds`` and never comes back
    """

    def __init__(
        self, mode: str = "approve", code: str = "abc", stall_seconds: float = 1.0
    ):
        self.mode = mode
        self.code = code
        self.stall_seconds = stall_seconds
        self.opened_urls: list[str] = []
        self.opened = asyncio.Event()
        self.returned = asyncio.Event()
        self.callback_responses: list[httpx.Response] = []
        self._loop = asyncio.get_running_loop()
        self._visits: list[concurrent.futures.Future] = []

    def __call__(self, url: str) -> bool:
        try:
            return self._open(url)
        finally:
            self._loop.call_soon_threadsafe(self.returned.set)

    def _open(self, url: str) -> bool:
        self.opened_urls.append(url)
        self._loop.call_soon_threadsafe(self.opened.set)
        if self.mode == "broken":
            return False
        if self.mode == "stall":
            time.sleep(self.stall_seconds)
            return True

        query = parse_qs(urlparse(url).query)
        redirect_uri = query["redirect_uri"][0]
        state = query["state"][0]

        if self.mode in ("approve", "console"):
            params = {"code": self.code, "state": state}
        elif self.mode == "forge":
            params = {"code": self.code, "state": "attacker-state"}
        elif self.mode == "deny":
            params = {"error": "access_denied", "state": state}
        else:
            return True

        callback_url = f"{redirect_uri}?{urlencode(params)}"
        if self.mode == "console":
            self.callback_responses.append(httpx.get(callback_url, timeout=2.0))
        else:
            self._visits.append(
                asyncio.run_coroutine_threadsafe(self._visit(callback_url), self._loop)
            )
        return True

    async def _visit(self, url: str) -> None:
        async with httpx.AsyncClient() as client:
            self.callback_responses.append(await client.get(url))

    def query(self) -> dict[str, str]:
        """Query parameters of the last authorize URL, single-valued."""
        parsed = parse_qs(urlparse(self.opened_urls[-1]).query)
        return {key: values[0] for key, values in parsed.items()}

    async def drain(self) -> None:
        if self._visits:
            await asyncio.gather(
                *(asyncio.wrap_future(visit) for visit in self._visits),
                return_exceptions=True,
            )


@pytest.fixture
def keyring_backend() -> InMemoryKeyring:
    return InMemoryKeyring()


@pytest.fixture
def store(keyring_backend) -> CredentialStore:
    return CredentialStore(backend=keyring_backend)


@pytest.fixture
def registry() -> CancellationRegistry:
    return CancellationRegistry()


@pytest.fixture
def settings() -> AuthSettings:
    return AuthSettings(
        client_id="client-123",
        client_secret="client-secret-456",
        authorize_url="https://auth.example.com/authorize",
        token_url="https://auth.example.com/token",
        scope="https://www.googleapis.com/auth/calendar.events",
        timeout_seconds=5.0,
        shutdown_grace_seconds=0.01,
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def make_browser():
    return FakeBrowser
