"""
Default data loader.

On an empty directory, registers the administrator and demo users and opens
an account for each of them.
"""

from typing import List

from .directory import InMemoryUserDirectory, UserProfile
from .exceptions import LedgerError
from .logging_config import get_logger
from .service import LedgerService

logger = get_logger("core_ledger.seed")

DEFAULT_USERS = [
    {"email": "admin@sulabh.com", "full_name": "SULABH Administrator", "phone_number": "+91-9876543210"},
    {"email": "user@sulabh.com", "full_name": "Demo User", "phone_number": "+91-9876543211"},
]


def load_initial_data(service: LedgerService, directory: InMemoryUserDirectory) -> List[UserProfile]:
    """
    Create the default users and their accounts if no user exists yet.

    Account failures are logged and do not stop the loader. Returns the
    users created (empty when the directory was already populated).
    """
    if directory.count() > 0:
        logger.debug("Directory already populated, skipping default data")
        return []

    logger.info("Creating default users...")
    users = [directory.register(**fields) for fields in DEFAULT_USERS]

    failures = 0
    for user in users:
        try:
            service.create_account(user.email)
        except LedgerError as e:
            failures += 1
            logger.error(f"Error creating account for default user {user.email}: {e}", exc_info=True)

    if not failures:
        logger.info("Default users and accounts created successfully")
    return users
