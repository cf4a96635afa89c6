import pytest

from account_rotator.core.types import Credential
from account_rotator.usage.registry import AccountRegistry
from account_rotator.usage.storage import AccountStorage


class FakeClock:
    """Controllable ms clock."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_credential(n: int) -> Credential:
    return Credential(
        access_token=f"ya29.access-token-{n}",
        refresh_token=f"1//refresh-token-{n}",
        project_id=f"project-{n}",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return AccountRegistry(clock=clock)


@pytest.fixture
def storage(tmp_path):
    return AccountStorage(tmp_path / "accounts.json")


@pytest.fixture
async def two_accounts(registry):
    first = await registry.add_account(make_credential(1), "first@example.com")
    second = await registry.add_account(make_credential(2), "second@example.com")
    return first, second
