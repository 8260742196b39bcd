"""
User directory capability.

The ledger does not authenticate anyone. It asks a UserDirectory to turn a
trusted caller identity (an email address in the bundled implementation)
into a user id, and to look up profile data for the wire models.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional
import threading

from .exceptions import UserNotFoundError
from .logging_config import get_logger


@dataclass
class UserProfile:
    """Profile data the ledger may show next to its records"""
    user_id: str
    email: str
    full_name: str
    phone_number: Optional[str] = None
    enabled: bool = True


class UserDirectory(ABC):
    """Identity resolution consumed by the ledger service"""

    @abstractmethod
    def resolve(self, identity: str) -> str:
        """
        Map a caller identity to a user id.

        Raises:
            UserNotFoundError: If the identity is unknown
        """
        pass

    @abstractmethod
    def lookup(self, user_id: str) -> Optional[UserProfile]:
        """Profile of a user, or None"""
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of known users"""
        pass


class InMemoryUserDirectory(UserDirectory):
    """Directory keyed by email, ids assigned sequentially"""

    def __init__(self):
        self._by_id: Dict[str, UserProfile] = {}
        self._by_email: Dict[str, str] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self.logger = get_logger("core_ledger.directory")

    def register(self, email: str, full_name: str, phone_number: Optional[str] = None) -> UserProfile:
        """Add a user; emails are matched case-insensitively and must be unique"""
        key = email.strip().lower()
        with self._lock:
            if key in self._by_email:
                raise ValueError(f"User {email} already registered")
            profile = UserProfile(
                user_id=str(self._next_id),
                email=email.strip(),
                full_name=full_name,
                phone_number=phone_number
            )
            self._next_id += 1
            self._by_id[profile.user_id] = profile
            self._by_email[key] = profile.user_id
        self.logger.info(f"Registered user {profile.user_id}")
        return profile

    def resolve(self, identity: str) -> str:
        with self._lock:
            user_id = self._by_email.get(identity.strip().lower())
        if user_id is None:
            raise UserNotFoundError(identity=identity)
        return user_id

    def lookup(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            return self._by_id.get(user_id)

    def count(self) -> int:
        with self._lock:
            return len(self._by_id)
