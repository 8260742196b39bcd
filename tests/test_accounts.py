"""
Test suite for the account store

Covers account opening, the one-account-per-user rule, account number
uniqueness and the version check on every save.
"""

import pytest
from decimal import Decimal

from core_ledger.accounts import AccountStore
from core_ledger.events import DomainEvent, EventDispatcher
from core_ledger.exceptions import AccountAlreadyExistsError, StaleRecordError, TransientStoreError
from core_ledger.ids import IdGenerator
from core_ledger.storage import InMemoryStorage, SQLiteStorage


class ScriptedIdGenerator(IdGenerator):
    """Hands out account numbers from a script, ignoring the existence check"""

    def __init__(self, numbers):
        super().__init__()
        self.numbers = iter(numbers)

    def next_account_number(self, exists):
        return next(self.numbers)


class TestAccountStore:
    """Test account store functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.events = EventDispatcher()
        self.published = []
        self.events.subscribe_all(self.published.append)
        self.accounts = AccountStore(self.storage, IdGenerator(), events=self.events)

    def test_create_account(self):
        account = self.accounts.create("user-1")

        assert account.id == 1
        assert account.balance == Decimal("0.00")
        assert account.owner_id == "user-1"
        assert account.account_type == "SAVINGS"
        assert len(account.account_number) == 10 and account.account_number.isdigit()
        assert account.version == 0
        assert account.created_at == account.updated_at

    def test_lookups(self):
        account = self.accounts.create("user-1")

        assert self.accounts.get(account.id) == account
        assert self.accounts.get_by_owner("user-1") == account
        assert self.accounts.get_by_account_number(account.account_number) == account
        assert self.accounts.exists_account_number(account.account_number)

        assert self.accounts.get(999) is None
        assert self.accounts.get_by_owner("user-2") is None
        assert self.accounts.get_by_account_number("not-a-number") is None
        assert not self.accounts.exists_account_number("not-a-number")

    def test_one_account_per_user(self):
        self.accounts.create("user-1")

        with pytest.raises(AccountAlreadyExistsError) as exc_info:
            self.accounts.create("user-1")

        assert exc_info.value.code == "ACCOUNT_ALREADY_EXISTS"
        assert self.storage.count("accounts") == 1

    def test_custom_and_default_account_type(self):
        store = AccountStore(self.storage, IdGenerator(), default_account_type="CHECKING")
        assert store.create("user-1").account_type == "CHECKING"
        assert store.create("user-2", account_type="BUSINESS").account_type == "BUSINESS"

    def test_account_numbers_unique(self):
        numbers = {self.accounts.create(f"user-{i}").account_number for i in range(50)}
        assert len(numbers) == 50

    def test_account_ids_are_sequential(self):
        ids = [self.accounts.create(f"user-{i}").id for i in range(3)]
        assert ids == [1, 2, 3]

    def test_collision_with_existing_number_redraws(self):
        generator = IdGenerator(rng=_rng([7, 7, 8]))
        store = AccountStore(self.storage, generator)

        assert store.create("user-1").account_number == "0000000007"
        assert store.create("user-2").account_number == "0000000008"

    def test_lost_race_on_insert_retries_with_backoff(self):
        sleeps = []
        store = AccountStore(
            self.storage, ScriptedIdGenerator(["0000000007", "0000000007", "0000000009"]),
            backoff_seconds=0.01, sleep=sleeps.append
        )

        store.create("user-1")
        second = store.create("user-2")

        assert second.account_number == "0000000009"
        assert sleeps == [0.01]

    def test_retries_are_bounded(self):
        sleeps = []
        store = AccountStore(
            self.storage, ScriptedIdGenerator(["0000000007"] * 5),
            max_attempts=3, backoff_seconds=0.01, sleep=sleeps.append
        )
        store.create("user-1")

        with pytest.raises(TransientStoreError):
            store.create("user-2")
        assert sleeps == [0.01, 0.02, 0.04]
        assert store.get_by_owner("user-2") is None

    def test_save_increments_version(self):
        account = self.accounts.create("user-1")
        account.balance = Decimal("10.00")

        self.accounts.save(account)

        assert account.version == 1
        stored = self.accounts.get(account.id)
        assert stored.balance == Decimal("10.00")
        assert stored.version == 1

    def test_stale_save_rejected(self):
        account = self.accounts.create("user-1")
        first = self.accounts.get(account.id)
        second = self.accounts.get(account.id)

        first.balance = Decimal("10.00")
        self.accounts.save(first)

        second.balance = Decimal("99.00")
        with pytest.raises(StaleRecordError):
            self.accounts.save(second)

        assert second.version == 0
        assert self.accounts.get(account.id).balance == Decimal("10.00")

    def test_account_created_event(self):
        account = self.accounts.create("user-1")

        created = [e for e in self.published if e.event_type == DomainEvent.ACCOUNT_CREATED]
        assert len(created) == 1
        assert created[0].entity_id == str(account.id)
        assert created[0].data["owner_id"] == "user-1"


class TestAccountStoreSQLite:
    """Same rules against the SQLite backend"""

    def setup_method(self):
        self.storage = SQLiteStorage()
        self.accounts = AccountStore(self.storage, IdGenerator())

    def teardown_method(self):
        self.storage.close()

    def test_create_and_reload(self):
        account = self.accounts.create("user-1")
        reloaded = self.accounts.get_by_account_number(account.account_number)
        assert reloaded == account

    def test_one_account_per_user(self):
        self.accounts.create("user-1")
        with pytest.raises(AccountAlreadyExistsError):
            self.accounts.create("user-1")

    def test_stale_save_rejected(self):
        account = self.accounts.create("user-1")
        stale = self.accounts.get(account.id)
        self.accounts.save(account)
        with pytest.raises(StaleRecordError):
            self.accounts.save(stale)


def _rng(values):
    class _Rng:
        def __init__(self):
            self.values = iter(values)

        def randrange(self, stop):
            return next(self.values)
    return _Rng()
