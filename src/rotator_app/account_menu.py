# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Interactive account manager for the antigravity pool.

Screens only collect intents; every state change goes through
apply_menu_action / apply_account_action, which call registry methods.
"""

import asyncio
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

import httpx
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt
from rich.table import Table

from account_rotator.client.styles import get_quota_key
from account_rotator.core.config import RotatorSettings
from account_rotator.core.errors import (
    CredentialRejectedError,
    RotatorError,
    TransientIOError,
    VerificationFailedError,
)
from account_rotator.core.types import (
    AccountStatus,
    Credential,
    HeaderStyle,
    ModelFamily,
)
from account_rotator.providers.google_oauth import (
    AccountVerifier,
    GoogleAccountVerifier,
    GoogleTokenRefresher,
    TokenRefresher,
)
from account_rotator.usage.ledger import format_countdown
from account_rotator.usage.registry import AccountRegistry, AccountSnapshot
from account_rotator.usage.storage import AccountStorage

console = Console()

DAY_MS = 86_400_000

# Quota keys shown as columns on the quota screen
QUOTA_COLUMNS = [
    get_quota_key(ModelFamily.CLAUDE, HeaderStyle.ANTIGRAVITY),
    get_quota_key(ModelFamily.GEMINI, HeaderStyle.ANTIGRAVITY),
    get_quota_key(ModelFamily.GEMINI, HeaderStyle.GEMINI_CLI),
]

# Menu intents
ACTION_ADD = "add"
ACTION_SELECT_ACCOUNT = "select-account"
ACTION_DELETE_ALL = "delete-all"
ACTION_CHECK = "check"
ACTION_VERIFY = "verify"
ACTION_VERIFY_ALL = "verify-all"
ACTION_CANCEL = "cancel"

# Account detail intents
ACCOUNT_BACK = "back"
ACCOUNT_DELETE = "delete"
ACCOUNT_REFRESH = "refresh"
ACCOUNT_TOGGLE = "toggle"
ACCOUNT_VERIFY = "verify"
ACCOUNT_CANCEL = "cancel"


@dataclass
class AuthMenuAction:
    """Intent chosen on the main menu."""

    type: str
    account_index: Optional[int] = None
    credential: Optional[Credential] = None
    email: Optional[str] = None


# =============================================================================
# FORMATTING
# =============================================================================


def clear_screen():
    """Clear the terminal screen."""
    os.system("cls" if os.name == "nt" else "clear")


def _now_ms() -> int:
    return int(time.time() * 1000)


def format_date(timestamp: Optional[int]) -> str:
    """Format a ms timestamp as a local date ('unknown' when missing)."""
    if not timestamp:
        return "unknown"
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d")


def format_relative_time(timestamp: Optional[int], now: Optional[int] = None) -> str:
    """
    Format a ms timestamp relative to now.

    Examples:
        None -> "never"
        same day -> "today"
        1 day -> "yesterday"
        2-6 days -> "3d ago"
        7-29 days -> "2w ago"
        older -> the date
    """
    if not timestamp:
        return "never"
    now = _now_ms() if now is None else now
    days = (now - timestamp) // DAY_MS
    if days <= 0:
        return "today"
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days}d ago"
    if days < 30:
        return f"{days // 7}w ago"
    return format_date(timestamp)


def _rate_limit_parts(
    families: List[str], reset_in: Dict[str, int]
) -> List[Tuple[str, Optional[int]]]:
    return [(family, reset_in.get(family)) for family in sorted(families)]


def status_badge(
    status: Optional[AccountStatus],
    rate_limited_families: Optional[List[str]] = None,
    rate_limit_reset_in: Optional[Dict[str, int]] = None,
) -> str:
    """Rich markup badge for an account status."""
    families = rate_limited_families or []
    reset_in = rate_limit_reset_in or {}

    if status == AccountStatus.ACTIVE:
        badge = f"[green]{escape('[active]')}[/green]"
        limited = []
        for family, remaining in _rate_limit_parts(families, reset_in):
            countdown = f", resets in {format_countdown(remaining)}" if remaining else ""
            text = f"[{family}: limited{countdown}]"
            limited.append(f"[yellow]{escape(text)}[/yellow]")
        return " ".join([badge] + limited)

    if status == AccountStatus.RATE_LIMITED:
        if not families:
            return f"[yellow]{escape('[rate-limited]')}[/yellow]"
        parts = [
            f"{family} resets in {format_countdown(remaining)}" if remaining else family
            for family, remaining in _rate_limit_parts(families, reset_in)
        ]
        text = "[rate-limited: " + ", ".join(parts) + "]"
        return f"[yellow]{escape(text)}[/yellow]"

    if status == AccountStatus.EXPIRED:
        return f"[red]{escape('[expired]')}[/red]"
    if status == AccountStatus.VERIFICATION_REQUIRED:
        return f"[red]{escape('[needs verification]')}[/red]"
    return ""


def account_line(snapshot: AccountSnapshot, now: Optional[int] = None) -> str:
    """Numbered menu line for one account, with badges and usage hint."""
    line = f"{snapshot.index + 1}. {escape(snapshot.label)}"
    if snapshot.is_current_account:
        line += f" [cyan]{escape('[current]')}[/cyan]"
    badge = status_badge(
        snapshot.status, snapshot.rate_limited_families, snapshot.rate_limit_reset_in
    )
    if badge:
        line += f" {badge}"
    if not snapshot.enabled:
        line += f" [red]{escape('[disabled]')}[/red]"
    if snapshot.last_used:
        line += f"  [dim]used {format_relative_time(snapshot.last_used, now)}[/dim]"
    return line


def current_account_index(registry: AccountRegistry) -> Optional[int]:
    """The most recently used account, if any was used."""
    used = [a for a in registry.accounts if a.last_used]
    if not used:
        return None
    return max(used, key=lambda a: a.last_used).index


# =============================================================================
# SCREENS
# =============================================================================


def _print_header(title: str, subtitle: Optional[str] = None):
    console.print("━" * 78)
    console.print(f"[bold cyan]{title}[/bold cyan]")
    if subtitle:
        console.print(f"[dim]{subtitle}[/dim]")
    console.print("━" * 78)
    console.print()


def _find_snapshot(
    snapshots: List[AccountSnapshot], number: str
) -> Optional[AccountSnapshot]:
    if not number.isdigit():
        return None
    index = int(number) - 1
    for snapshot in snapshots:
        if snapshot.index == index:
            return snapshot
    return None


def prompt_new_account() -> Optional[AuthMenuAction]:
    """Ask for the credential of a new account."""
    console.print()
    console.print("[bold]Add Account[/bold]")
    refresh_token = Prompt.ask("Refresh token", default="").strip()
    access_token = Prompt.ask("Access token (optional)", default="").strip()
    if not refresh_token and not access_token:
        console.print("[dim]Cancelled.[/dim]")
        return None
    email = Prompt.ask("Email (optional)", default="").strip() or None
    project_id = Prompt.ask("Project id (optional)", default="").strip() or None
    credential = Credential(
        access_token=access_token,
        refresh_token=refresh_token or None,
        project_id=project_id,
    )
    return AuthMenuAction(ACTION_ADD, credential=credential, email=email)


def show_auth_menu(snapshots: List[AccountSnapshot]) -> AuthMenuAction:
    """
    Main menu. Returns the chosen intent.

    Deleting all accounts asks for confirmation; declining shows the
    menu again.
    """
    while True:
        clear_screen()
        _print_header(
            "Google accounts (Antigravity)", "Select an action or account"
        )

        console.print("[bold]Actions[/bold]")
        console.print("   A. Add account")
        console.print("   C. Check quotas")
        console.print("   V. Verify one account")
        console.print("   W. Verify all accounts")
        console.print()

        console.print("[bold]Accounts[/bold]")
        if not snapshots:
            console.print("   [dim]No accounts configured yet.[/dim]")
        now = _now_ms()
        for snapshot in snapshots:
            console.print(f"   {account_line(snapshot, now)}")
        console.print()

        console.print("[bold red]Danger zone[/bold red]")
        console.print("   [red]X. Delete all accounts[/red]")
        console.print()
        console.print("   Q. Quit")
        console.print("━" * 78)

        choice = Prompt.ask("Select option", default="Q").strip().upper()

        if choice == "Q":
            return AuthMenuAction(ACTION_CANCEL)
        if choice == "A":
            action = prompt_new_account()
            if action is None:
                continue
            return action
        if choice == "C":
            return AuthMenuAction(ACTION_CHECK)
        if choice == "W":
            return AuthMenuAction(ACTION_VERIFY_ALL)
        if choice == "V":
            number = Prompt.ask("Account number", default="").strip()
            snapshot = _find_snapshot(snapshots, number)
            if snapshot is None:
                console.print("[bold red]Invalid account number.[/bold red]")
                continue
            return AuthMenuAction(ACTION_VERIFY, account_index=snapshot.index)
        if choice == "X":
            if not Confirm.ask(
                "Delete ALL accounts? This cannot be undone.", default=False
            ):
                continue
            return AuthMenuAction(ACTION_DELETE_ALL)

        snapshot = _find_snapshot(snapshots, choice)
        if snapshot is not None:
            return AuthMenuAction(ACTION_SELECT_ACCOUNT, account_index=snapshot.index)
        console.print("[bold red]Invalid choice.[/bold red]")


def show_account_details(snapshot: AccountSnapshot) -> str:
    """
    Details screen for one account. Returns an account intent.

    Delete and refresh ask for confirmation; declining shows the
    screen again.
    """
    label = snapshot.label
    while True:
        clear_screen()
        header = escape(label)
        badge = status_badge(
            snapshot.status,
            snapshot.rate_limited_families,
            snapshot.rate_limit_reset_in,
        )
        console.print("━" * 78)
        console.print(f"[bold cyan]{header}[/bold cyan] {badge}".rstrip())
        if not snapshot.enabled:
            console.print(f"[red]{escape('[disabled]')}[/red]")
        console.print(
            f"[dim]Added: {format_date(snapshot.added_at)} | "
            f"Last used: {format_relative_time(snapshot.last_used)}[/dim]"
        )
        console.print("━" * 78)
        console.print()
        console.print("   B. Back")
        console.print("   V. Verify account access")
        if snapshot.enabled:
            console.print("   T. [yellow]Disable account[/yellow]")
        else:
            console.print("   T. [green]Enable account[/green]")
        console.print("   R. Refresh token")
        console.print("   D. [red]Delete this account[/red]")
        console.print()

        choice = Prompt.ask("Select option", default="B").strip().upper()

        if choice == "B":
            return ACCOUNT_BACK
        if choice == "V":
            return ACCOUNT_VERIFY
        if choice == "T":
            return ACCOUNT_TOGGLE
        if choice == "R":
            if not Confirm.ask(f"Re-authenticate {label}?", default=False):
                continue
            return ACCOUNT_REFRESH
        if choice == "D":
            if not Confirm.ask(f"Delete {label}?", default=False):
                continue
            return ACCOUNT_DELETE
        console.print("[bold red]Invalid choice.[/bold red]")


def show_quota_table(snapshots: List[AccountSnapshot]):
    """Render the per-quota-key countdowns of every account."""
    table = Table(title="Quota status", show_header=True, header_style="bold")
    table.add_column("#", style="dim", width=3)
    table.add_column("Account", min_width=24)
    table.add_column("Status", min_width=14)
    for quota_key in QUOTA_COLUMNS:
        table.add_column(quota_key, justify="center")

    for snapshot in snapshots:
        cells = []
        for quota_key in QUOTA_COLUMNS:
            countdown = snapshot.reset_countdowns.get(quota_key)
            cells.append(
                f"[yellow]{countdown}[/yellow]" if countdown else "[green]ok[/green]"
            )
        table.add_row(
            str(snapshot.index + 1),
            escape(snapshot.label),
            status_badge(snapshot.status) or snapshot.status.value,
            *cells,
        )

    console.print(table)
    console.print()


# =============================================================================
# INTENT HANDLING
# =============================================================================


async def apply_account_action(
    action: str,
    index: int,
    registry: AccountRegistry,
    verifier: Optional[AccountVerifier] = None,
    refresher: Optional[TokenRefresher] = None,
) -> Optional[str]:
    """
    Apply an account-details intent through the registry.

    Returns:
        A short message describing the outcome, or None for back/cancel

    Raises:
        VerificationFailedError: verify could not confirm the account
        CredentialRejectedError: refresh was refused
    """
    account = registry.get(index)
    if account is None or action in (ACCOUNT_BACK, ACCOUNT_CANCEL):
        return None

    if action == ACCOUNT_DELETE:
        await registry.remove_account(index)
        return f"Deleted {account.label}"
    if action == ACCOUNT_TOGGLE:
        await registry.set_enabled(account, not account.enabled)
        state = "Enabled" if account.enabled else "Disabled"
        return f"{state} {account.label}"
    if action == ACCOUNT_VERIFY:
        if verifier is None:
            raise RotatorError("No verifier configured")
        await registry.verify_account(account, verifier)
        return f"Verified {account.label}"
    if action == ACCOUNT_REFRESH:
        if refresher is None:
            raise RotatorError("No token refresher configured")
        await registry.refresh_account(account, refresher)
        return f"Refreshed {account.label}"

    raise ValueError(f"Unknown account action: {action}")


async def apply_menu_action(
    action: AuthMenuAction,
    registry: AccountRegistry,
    verifier: Optional[AccountVerifier] = None,
    refresher: Optional[TokenRefresher] = None,
) -> Union[None, str, Dict[int, str]]:
    """
    Apply a main-menu intent through the registry.

    add with only a refresh token exchanges it for an access token right
    away; if that fails the saved account is marked expired.

    verify-all returns a mapping of account index to outcome
    ("verified", "needs verification", or the transient error); it never
    stops at the first failing account.
    """
    if action.type in (ACTION_CANCEL, ACTION_CHECK, ACTION_SELECT_ACCOUNT):
        return None

    if action.type == ACTION_ADD:
        if action.credential is None:
            raise ValueError("add requires a credential")
        if not action.credential.access_token and refresher is None:
            raise RotatorError("No token refresher configured")
        account = await registry.add_account(action.credential, action.email)
        if not account.credential.access_token:
            try:
                await registry.refresh_account(account, refresher)
            except (CredentialRejectedError, TransientIOError):
                await registry.set_status(account, AccountStatus.EXPIRED)
                raise
        return f"Saved {account.label}"

    if action.type == ACTION_DELETE_ALL:
        count = await registry.remove_all()
        return f"Deleted {count} account(s)"

    if action.type == ACTION_VERIFY:
        if action.account_index is None:
            raise ValueError("verify requires an account index")
        return await apply_account_action(
            ACCOUNT_VERIFY, action.account_index, registry, verifier
        )

    if action.type == ACTION_VERIFY_ALL:
        if verifier is None:
            raise RotatorError("No verifier configured")
        results: Dict[int, str] = {}
        for account in registry.accounts:
            try:
                await registry.verify_account(account, verifier)
                results[account.index] = "verified"
            except VerificationFailedError:
                results[account.index] = "needs verification"
            except TransientIOError as e:
                results[account.index] = f"error: {e}"
        return results

    raise ValueError(f"Unknown menu action: {action.type}")


# =============================================================================
# ENTRY POINT
# =============================================================================


def _pause():
    Prompt.ask("Press Enter to continue", default="")


async def _account_details_loop(
    index: int,
    registry: AccountRegistry,
    verifier: AccountVerifier,
    refresher: TokenRefresher,
):
    while True:
        snapshot = next(
            (
                s
                for s in registry.snapshots(current_account_index(registry))
                if s.index == index
            ),
            None,
        )
        if snapshot is None:
            return
        action = show_account_details(snapshot)
        if action in (ACCOUNT_BACK, ACCOUNT_CANCEL):
            return
        try:
            message = await apply_account_action(
                action, index, registry, verifier, refresher
            )
            if message:
                console.print(f"[green]{escape(message)}[/green]")
        except (CredentialRejectedError, VerificationFailedError) as e:
            console.print(f"[bold yellow]{escape(str(e))}[/bold yellow]")
        except RotatorError as e:
            console.print(f"[bold red]Error: {escape(str(e))}[/bold red]")
        _pause()
        if action == ACCOUNT_DELETE:
            return


async def _menu_loop(settings: RotatorSettings):
    registry = AccountRegistry(AccountStorage(settings.accounts_file))
    await registry.initialize()

    async with httpx.AsyncClient(timeout=settings.request_timeout) as http_client:
        verifier = GoogleAccountVerifier(http_client)
        refresher = GoogleTokenRefresher(
            http_client, settings.oauth_client_id, settings.oauth_client_secret
        )

        while True:
            snapshots = registry.snapshots(current_account_index(registry))
            action = show_auth_menu(snapshots)

            if action.type == ACTION_CANCEL:
                return
            if action.type == ACTION_CHECK:
                clear_screen()
                show_quota_table(registry.snapshots(current_account_index(registry)))
                _pause()
                continue
            if action.type == ACTION_SELECT_ACCOUNT:
                await _account_details_loop(
                    action.account_index, registry, verifier, refresher
                )
                continue

            try:
                with console.status("[bold]Working...", spinner="dots"):
                    result = await apply_menu_action(
                        action, registry, verifier, refresher
                    )
            except (CredentialRejectedError, VerificationFailedError) as e:
                console.print(f"[bold yellow]{escape(str(e))}[/bold yellow]")
            except RotatorError as e:
                console.print(f"[bold red]Error: {escape(str(e))}[/bold red]")
            else:
                if isinstance(result, dict):
                    for index, outcome in result.items():
                        account = registry.get(index)
                        label = account.label if account else f"Account {index + 1}"
                        console.print(f"   {escape(label)}: {escape(outcome)}")
                elif result:
                    console.print(f"[green]{escape(result)}[/green]")
            _pause()


def run_account_menu():
    """Entry point for the account manager."""
    settings = RotatorSettings.from_env()
    try:
        asyncio.run(_menu_loop(settings))
    except KeyboardInterrupt:
        console.print("\n[dim]Exiting.[/dim]")


if __name__ == "__main__":
    run_account_menu()
