# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
JSON file store for the account pool.

The store is the only durability mechanism: the registry loads it once at
startup and writes the whole pool back after every mutation. Writes go to
a temp file that is then renamed over the target.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from ..core.constants import ACCOUNTS_SCHEMA_VERSION, LIB_LOGGER_NAME

lib_logger = logging.getLogger(LIB_LOGGER_NAME)


class AccountStorage:
    """
    Load and save account records.

    Record shape:
        {
            "index": int,
            "email": str | None,
            "credential": {...},
            "status": str,
            "enabled": bool,
            "added_at": int,
            "last_used": int | None,
            "rate_limit_reset_times": {quota_key: reset_at_ms},
        }
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)

    async def load(self) -> List[Dict[str, Any]]:
        """
        Load all account records.

        A missing file yields []. A corrupt file is renamed to
        `<name>.corrupt` and also yields []. Read errors propagate.
        """
        return await asyncio.to_thread(self._read)

    async def save(self, records: List[Dict[str, Any]]) -> bool:
        """Persist all account records. Returns False on failure."""
        return await asyncio.to_thread(self._write, records)

    def _read(self) -> List[Dict[str, Any]]:
        if not self.file_path.exists():
            return []
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as e:
            self._quarantine(f"unparseable JSON ({e})")
            return []
        except OSError as e:
            # Starting empty here would overwrite the file on the next save
            lib_logger.error(f"Failed to read accounts from {self.file_path}: {e}")
            raise

        if not isinstance(data, dict):
            self._quarantine(f"expected an object, got {type(data).__name__}")
            return []
        accounts = data.get("accounts", [])
        if not isinstance(accounts, list):
            self._quarantine("'accounts' is not a list")
            return []
        return [a for a in accounts if isinstance(a, dict)]

    def _quarantine(self, reason: str) -> None:
        """Move an unreadable store aside so the next save cannot clobber it."""
        corrupt_path = self.file_path.with_suffix(self.file_path.suffix + ".corrupt")
        self.file_path.replace(corrupt_path)
        lib_logger.error(
            f"Accounts file {self.file_path} is corrupt: {reason}. "
            f"Moved it to {corrupt_path}, starting with an empty pool"
        )

    def _write(self, records: List[Dict[str, Any]]) -> bool:
        payload = {"version": ACCOUNTS_SCHEMA_VERSION, "accounts": records}
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.file_path.with_suffix(".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            temp_path.replace(self.file_path)
            lib_logger.debug(f"Saved {len(records)} account(s) to {self.file_path}")
            return True
        except OSError as e:
            lib_logger.error(f"Failed to save accounts to {self.file_path}: {e}")
            return False
