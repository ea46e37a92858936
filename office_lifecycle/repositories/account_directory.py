"""Account directory - in-memory view of client and staff accounts.

Stands in for the account service: resolves owner contact details for
emails, lists staff for admin fan-out notifications and records the
active flag that admin commands toggle.
"""

import threading
from typing import Dict, Iterable, List, Optional

from office_lifecycle.logging_config import get_logger
from office_lifecycle.models.account import AccountRecord, AccountRole

logger = get_logger(__name__)


class AccountNotFoundError(Exception):
    """Raised when an account is not found in the directory."""

    pass


class AccountDirectory:
    """Thread-safe account lookup keyed by account id."""

    def __init__(self, accounts: Optional[Iterable[AccountRecord]] = None):
        """Initialize directory.

        Args:
            accounts: Accounts to seed the directory with
        """
        self._accounts: Dict[str, AccountRecord] = {}
        self._lock = threading.RLock()
        for account in accounts or ():
            self.add(account)

    def add(self, account: AccountRecord) -> None:
        """Add an account.

        Raises:
            ValueError: If the account id already exists
        """
        with self._lock:
            if account.id in self._accounts:
                raise ValueError(f"Account '{account.id}' already exists")
            self._accounts[account.id] = account

    def get(self, account_id: str) -> AccountRecord:
        """Get account by id.

        Raises:
            AccountNotFoundError: If the id is unknown
        """
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(f"Account not found: {account_id}")
            return account.model_copy()

    def find(self, account_id: str) -> Optional[AccountRecord]:
        """Find account by id (returns None if not found)."""
        with self._lock:
            account = self._accounts.get(account_id)
            return account.model_copy() if account else None

    def list_admins(self) -> List[AccountRecord]:
        """Active staff accounts, the recipients of admin notifications."""
        with self._lock:
            return [
                a.model_copy()
                for a in self._accounts.values()
                if a.is_staff and a.is_active
            ]

    def set_active(self, account_id: str, is_active: bool) -> bool:
        """Set the active flag on an account.

        Args:
            account_id: Account identifier
            is_active: New flag value

        Returns:
            True if the flag changed, False if it already had that value

        Raises:
            AccountNotFoundError: If the id is unknown
        """
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(f"Account not found: {account_id}")
            if account.is_active == is_active:
                return False
            account.is_active = is_active

        logger.info("account_active_changed", account_id=account_id, is_active=is_active)
        return True

    def label_for(self, account_id: str) -> str:
        """Name used to address the account in notification text."""
        account = self.find(account_id)
        if account is None:
            return account_id
        return account.company_name or account.email

    def clear(self) -> None:
        """Remove every account."""
        with self._lock:
            self._accounts.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._accounts)

    def __contains__(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._accounts


# Global directory instance
_directory_instance: Optional[AccountDirectory] = None
_directory_lock = threading.Lock()


def get_account_directory() -> AccountDirectory:
    """Get global account directory (singleton), seeded with configured staff."""
    global _directory_instance
    if _directory_instance is None:
        with _directory_lock:
            if _directory_instance is None:
                from office_lifecycle.config import get_config

                staff = [
                    AccountRecord(id=s.id, email=s.email, role=AccountRole(s.role))
                    for s in get_config().admin_accounts
                ]
                _directory_instance = AccountDirectory(staff)
    return _directory_instance


def reset_account_directory() -> None:
    """Drop the global directory so the next call re-seeds it."""
    global _directory_instance
    with _directory_lock:
        _directory_instance = None
