import asyncio
from typing import Callable, Optional

import pytest

from potoken_service.coordinator import UpdateCoordinator
from potoken_service.services.extractor import ExtractedCredentials

LONG_TOKEN = "MnQ" + "a" * 190 + "==="
SESSION_ID = "CgtXa1ZxZmJ4Y0FCRSiQ2ZO5BjIKCgJERRIEEgAgTg%3D%3D"


def make_credentials(token: str = LONG_TOKEN, session_id: str = SESSION_ID) -> ExtractedCredentials:
    return ExtractedCredentials(credential_token=token, session_id=session_id)


class FakeDriver:
    """
    Stands in for BrowserSessionDriver.

    Each call pops the next scripted result: credentials are returned,
    exceptions are raised, and an exhausted script returns fresh credentials.
    When ``gate`` is set the call blocks until the gate opens.
    """

    def __init__(self, results=()):
        self.results = list(results)
        self.gate: Optional[asyncio.Event] = None
        self.calls = 0
        self.active = 0
        self.max_active = 0

    def block(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def extract_once(self):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            result = self.results.pop(0) if self.results else make_credentials()
            if isinstance(result, BaseException):
                raise result
            return result
        finally:
            self.active -= 1


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(driver, clock):
    return UpdateCoordinator(driver, clock=clock)
