# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
AccountRegistry and account records.

The registry is the single owner of account state. Every component that
needs accounts receives the registry explicitly; nothing reads account
state from module globals.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    AbstractSet,
    Any,
    Callable,
    Dict,
    List,
    Optional,
)

from ..client.styles import get_quota_key
from ..core.constants import LIB_LOGGER_NAME
from ..core.errors import (
    CredentialRejectedError,
    VerificationFailedError,
    mask_credential,
)
from ..core.types import (
    BLOCKED_STATUSES,
    AccountStatus,
    Credential,
    HeaderStyle,
    ModelFamily,
)
from .ledger import RateLimitLedger, format_countdown
from .storage import AccountStorage

if TYPE_CHECKING:
    from ..providers.google_oauth import AccountVerifier, TokenRefresher

lib_logger = logging.getLogger(LIB_LOGGER_NAME)


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# ACCOUNT TYPES
# =============================================================================


@dataclass
class Account:
    """One credentialed identity in the pool."""

    index: int
    credential: Credential
    email: Optional[str] = None
    status: AccountStatus = AccountStatus.UNKNOWN
    added_at: int = 0
    last_used: Optional[int] = None
    enabled: bool = True

    @property
    def label(self) -> str:
        return self.email or f"Account {self.index + 1}"


@dataclass
class AccountSnapshot:
    """
    Read-only view of an account for display.

    status is the derived status: rate-limited iff rate_limited_families
    is non-empty, unless the account is expired or needs verification.
    """

    index: int
    email: Optional[str]
    status: AccountStatus
    rate_limited_families: List[str] = field(default_factory=list)
    rate_limit_reset_in: Dict[str, int] = field(default_factory=dict)
    reset_countdowns: Dict[str, str] = field(default_factory=dict)
    added_at: Optional[int] = None
    last_used: Optional[int] = None
    enabled: bool = True
    is_current_account: bool = False

    @property
    def label(self) -> str:
        return self.email or f"Account {self.index + 1}"


# =============================================================================
# REGISTRY
# =============================================================================


class AccountRegistry:
    """
    Pool of accounts plus their rate limit ledger.

    Mutations are serialised per account with an asyncio.Lock keyed by
    index, so unrelated accounts never wait on each other. After each
    mutation the whole pool is written to the store.

    Example:
        registry = AccountRegistry(AccountStorage("accounts.json"))
        await registry.initialize()
        account = registry.select_account(ModelFamily.GEMINI, HeaderStyle.ANTIGRAVITY)
    """

    def __init__(
        self,
        storage: Optional[AccountStorage] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize AccountRegistry.

        Args:
            storage: Optional account store; without one the pool is memory-only
            clock: Optional callable returning now in ms (for tests)
        """
        self._storage = storage
        self._clock = clock or _now_ms
        self._accounts: Dict[int, Account] = {}
        self._ledger = RateLimitLedger()
        self._locks: Dict[int, asyncio.Lock] = {}
        self._pool_lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()
        self._initialized = False

    # =========================================================================
    # LOADING AND PERSISTENCE
    # =========================================================================

    async def initialize(self) -> None:
        """Load accounts from the store once."""
        async with self._pool_lock:
            if self._initialized:
                return
            if self._storage:
                for record in await self._storage.load():
                    try:
                        account = self._account_from_record(record)
                    except (KeyError, TypeError, ValueError) as e:
                        lib_logger.warning(f"Skipping malformed account record: {e}")
                        continue
                    self._accounts[account.index] = account
                    self._ledger.load(
                        account.index, record.get("rate_limit_reset_times") or {}
                    )
                removed = self._ledger.prune(self.now())
                if removed:
                    lib_logger.debug(f"Pruned {removed} expired rate limit(s)")
            self._initialized = True
            lib_logger.debug(
                f"AccountRegistry initialized with {len(self._accounts)} account(s)"
            )

    def _account_from_record(self, record: Dict[str, Any]) -> Account:
        return Account(
            index=int(record["index"]),
            credential=Credential.from_dict(record["credential"]),
            email=record.get("email"),
            status=AccountStatus(record.get("status", AccountStatus.UNKNOWN.value)),
            added_at=int(record.get("added_at") or 0),
            last_used=record.get("last_used"),
            enabled=bool(record.get("enabled", True)),
        )

    def _account_to_record(self, account: Account) -> Dict[str, Any]:
        return {
            "index": account.index,
            "email": account.email,
            "credential": account.credential.to_dict(),
            "status": account.status.value,
            "enabled": account.enabled,
            "added_at": account.added_at,
            "last_used": account.last_used,
            "rate_limit_reset_times": self._ledger.reset_times(account.index),
        }

    async def _persist(self) -> None:
        if not self._storage:
            return
        async with self._save_lock:
            records = [self._account_to_record(a) for a in self.accounts]
            await self._storage.save(records)

    def _is_pooled(self, account: Account) -> bool:
        """False once the account has been removed from the pool."""
        return self._accounts.get(account.index) is account

    def _lock_for(self, index: int) -> asyncio.Lock:
        lock = self._locks.get(index)
        if lock is None:
            lock = self._locks[index] = asyncio.Lock()
        return lock

    # =========================================================================
    # QUERIES
    # =========================================================================

    def now(self) -> int:
        return self._clock()

    @property
    def accounts(self) -> List[Account]:
        """All accounts ordered by index."""
        return [self._accounts[i] for i in sorted(self._accounts)]

    @property
    def ledger(self) -> RateLimitLedger:
        return self._ledger

    def get(self, index: int) -> Optional[Account]:
        return self._accounts.get(index)

    def derived_status(self, account: Account, now: Optional[int] = None) -> AccountStatus:
        """Status as used for routing and display."""
        if account.status in BLOCKED_STATUSES:
            return account.status
        now = self.now() if now is None else now
        if self._ledger.exhausted_keys(account.index, now):
            return AccountStatus.RATE_LIMITED
        if account.status == AccountStatus.RATE_LIMITED:
            return AccountStatus.ACTIVE
        return account.status

    def select_account(
        self,
        family: ModelFamily,
        style: HeaderStyle,
        excluding: AbstractSet[int] = frozenset(),
    ) -> Optional[Account]:
        """
        Pick the lowest-index usable account for a family and dialect.

        Args:
            family: Model family of the call
            style: Dialect of the call (selects the quota key for gemini)
            excluding: Account indices to skip

        Returns:
            The account, or None if no account qualifies
        """
        now = self.now()
        quota_key = get_quota_key(family, style)
        for account in self.accounts:
            if account.index in excluding or not account.enabled:
                continue
            if account.status in BLOCKED_STATUSES:
                continue
            if self._ledger.is_exhausted(account.index, quota_key, now):
                continue
            return account
        return None

    def snapshots(self, current_index: Optional[int] = None) -> List[AccountSnapshot]:
        """Read-only views of every account, with countdown strings."""
        now = self.now()
        result = []
        for account in self.accounts:
            reset_in = self._ledger.reset_in(account.index, now)
            result.append(
                AccountSnapshot(
                    index=account.index,
                    email=account.email,
                    status=self.derived_status(account, now),
                    rate_limited_families=sorted(reset_in),
                    rate_limit_reset_in=reset_in,
                    reset_countdowns={
                        key: format_countdown(ms) for key, ms in reset_in.items()
                    },
                    added_at=account.added_at,
                    last_used=account.last_used,
                    enabled=account.enabled,
                    is_current_account=account.index == current_index,
                )
            )
        return result

    # =========================================================================
    # POOL MUTATIONS
    # =========================================================================

    async def add_account(
        self, credential: Credential, email: Optional[str] = None
    ) -> Account:
        """
        Add a credential to the pool.

        A credential whose identity (or email) is already pooled updates
        that account instead, so no two accounts share a handle.
        """
        async with self._pool_lock:
            existing = None
            for account in self._accounts.values():
                if account.credential.identity == credential.identity or (
                    email and account.email == email
                ):
                    existing = account
                    break

            if existing is not None:
                async with self._lock_for(existing.index):
                    existing.credential = credential
                    if existing.status in (AccountStatus.EXPIRED, AccountStatus.UNKNOWN):
                        existing.status = AccountStatus.UNKNOWN
                    if email:
                        existing.email = email
                account = existing
                lib_logger.info(f"Updated credential for {account.label}")
            else:
                index = max(self._accounts, default=-1) + 1
                # Drop anything written under this index by calls that outlived
                # a removed account
                self._ledger.forget(index)
                account = Account(
                    index=index,
                    credential=credential,
                    email=email,
                    added_at=self.now(),
                )
                self._accounts[index] = account
                lib_logger.info(
                    f"Added account {account.label} "
                    f"({mask_credential(credential.identity)})"
                )
        await self._persist()
        return account

    async def remove_account(self, index: int) -> bool:
        async with self._pool_lock:
            account = self._accounts.get(index)
            if account is None:
                return False
            async with self._lock_for(index):
                del self._accounts[index]
                self._ledger.forget(index)
            self._locks.pop(index, None)
        lib_logger.info(f"Removed account {account.label}")
        await self._persist()
        return True

    async def remove_all(self) -> int:
        async with self._pool_lock:
            count = len(self._accounts)
            for index in list(self._accounts):
                async with self._lock_for(index):
                    del self._accounts[index]
                    self._ledger.forget(index)
            self._locks.clear()
        lib_logger.info(f"Removed all {count} account(s)")
        await self._persist()
        return count

    # =========================================================================
    # ACCOUNT MUTATIONS
    # =========================================================================

    async def set_enabled(self, account: Account, enabled: bool) -> None:
        async with self._lock_for(account.index):
            if not self._is_pooled(account):
                return
            account.enabled = enabled
        await self._persist()

    async def set_status(self, account: Account, status: AccountStatus) -> None:
        async with self._lock_for(account.index):
            if not self._is_pooled(account):
                return
            if account.status != status:
                lib_logger.info(
                    f"{account.label}: {account.status.value} -> {status.value}"
                )
            account.status = status
        await self._persist()

    async def record_use(self, account: Account) -> None:
        """Record a successful call: stamp last_used, unknown becomes active."""
        async with self._lock_for(account.index):
            if not self._is_pooled(account):
                return
            account.last_used = self.now()
            if account.status == AccountStatus.UNKNOWN:
                account.status = AccountStatus.ACTIVE
        await self._persist()

    async def mark_exhausted(
        self, account: Account, quota_key: str, reset_at: int
    ) -> None:
        """Record quota exhaustion observed from an upstream response."""
        async with self._lock_for(account.index):
            if not self._is_pooled(account):
                lib_logger.debug(
                    f"Ignoring {quota_key} exhaustion for removed {account.label}"
                )
                return
            self._ledger.mark_exhausted(account.index, quota_key, reset_at)
            if account.status not in BLOCKED_STATUSES:
                account.status = AccountStatus.RATE_LIMITED
        lib_logger.warning(
            f"{account.label}: {quota_key} exhausted, resets in "
            f"{format_countdown(reset_at - self.now())}"
        )
        await self._persist()

    # =========================================================================
    # COLLABORATORS
    # =========================================================================

    async def verify_account(
        self, account: Account, verifier: "AccountVerifier"
    ) -> None:
        """
        Run the verification probe and apply its outcome.

        Raises:
            VerificationFailedError: The probe could not confirm the account
        """
        verified = await verifier.verify(account)
        await self.set_status(
            account,
            AccountStatus.ACTIVE if verified else AccountStatus.VERIFICATION_REQUIRED,
        )
        if not verified:
            raise VerificationFailedError(
                f"{account.label} requires verification", account.index
            )

    async def refresh_account(
        self, account: Account, refresher: "TokenRefresher"
    ) -> None:
        """
        Refresh the account's credential.

        On success the new credential replaces the old one and an expired
        account becomes active. On failure the status is left unchanged.

        Raises:
            CredentialRejectedError: The refresh was refused
        """
        try:
            credential = await refresher.refresh(account)
        except CredentialRejectedError:
            lib_logger.warning(f"Token refresh failed for {account.label}")
            raise

        async with self._lock_for(account.index):
            if not self._is_pooled(account):
                return
            account.credential = credential
            if account.status in (AccountStatus.EXPIRED, AccountStatus.UNKNOWN):
                account.status = AccountStatus.ACTIVE
        lib_logger.info(f"Refreshed credential for {account.label}")
        await self._persist()
