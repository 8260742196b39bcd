"""
Concurrency tests

Many threads hitting the same accounts must never lose an update, reuse a
transaction id, break conservation of money or deadlock.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from core_ledger.config import LedgerConfig
from core_ledger.directory import InMemoryUserDirectory
from core_ledger.exceptions import AccountAlreadyExistsError
from core_ledger.schemas import TransferRequest
from core_ledger.service import LedgerService
from core_ledger.storage import InMemoryStorage, SQLiteStorage


def make_service(storage):
    directory = InMemoryUserDirectory()
    config = LedgerConfig(database_url="memory://", lock_timeout_seconds=30.0)
    return LedgerService(storage, directory, config=config), directory


class TestConcurrentMovements:

    def make_storage(self, tmp_path):
        return InMemoryStorage()

    @pytest.fixture(autouse=True)
    def setup_service(self, tmp_path):
        self.storage = self.make_storage(tmp_path)
        self.service, self.directory = make_service(self.storage)
        for email in ("alice@example.com", "bob@example.com"):
            self.directory.register(email, email.split("@")[0].title())
            self.service.create_account(email)
        yield
        self.storage.close()

    def test_concurrent_deposits(self):
        count = 1000

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(
                lambda i: self.service.deposit("alice@example.com", "1.00", f"deposit {i}"),
                range(count)
            ))

        ids = {r.transaction_id for r in results}
        assert len(ids) == count
        assert self.service.get_balance("alice@example.com") == Decimal("1000.00")
        assert len(self.service.list_transactions("alice@example.com")) == count

    def test_opposite_direction_transfers_conserve_money(self):
        self.service.deposit("alice@example.com", "1000.00")
        self.service.deposit("bob@example.com", "1000.00")
        alice_number = self.service.get_account("alice@example.com").account_number
        bob_number = self.service.get_account("bob@example.com").account_number

        def move(i):
            if i % 2:
                return self.service.transfer(
                    "alice@example.com", TransferRequest(to_account_number=bob_number, amount="1.00"))
            return self.service.transfer(
                "bob@example.com", TransferRequest(to_account_number=alice_number, amount="2.00"))

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(move, range(400)))

        assert len({r.transaction_id for r in results}) == 400
        alice = self.service.get_balance("alice@example.com")
        bob = self.service.get_balance("bob@example.com")
        assert alice + bob == Decimal("2000.00")
        assert alice == Decimal("1200.00")  # +200 * 2.00 - 200 * 1.00
        assert bob == Decimal("800.00")

    def test_concurrent_overdraw_attempts(self):
        self.service.deposit("alice@example.com", "100.00")
        bob_number = self.service.get_account("bob@example.com").account_number
        outcomes = []

        def attempt(_):
            try:
                self.service.transfer(
                    "alice@example.com", TransferRequest(to_account_number=bob_number, amount="30.00"))
                outcomes.append("ok")
            except ValueError:
                outcomes.append("rejected")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(attempt, range(10)))

        assert outcomes.count("ok") == 3
        assert self.service.get_balance("alice@example.com") == Decimal("10.00")
        assert self.service.get_balance("bob@example.com") == Decimal("90.00")


class TestConcurrentMovementsSQLite(TestConcurrentMovements):

    def make_storage(self, tmp_path):
        return SQLiteStorage(tmp_path / "ledger.db")


class TestConcurrentAccountCreation:

    def setup_method(self):
        self.service, self.directory = make_service(InMemoryStorage())

    def test_distinct_users_get_distinct_numbers(self):
        emails = [f"user{i}@example.com" for i in range(50)]
        for email in emails:
            self.directory.register(email, "User")

        with ThreadPoolExecutor(max_workers=8) as pool:
            accounts = list(pool.map(self.service.create_account, emails))

        assert len({a.account_number for a in accounts}) == 50
        assert len({a.id for a in accounts}) == 50

    def test_same_user_gets_one_account(self):
        self.directory.register("alice@example.com", "Alice")
        outcomes = []

        def attempt(_):
            try:
                self.service.create_account("alice@example.com")
                outcomes.append("created")
            except AccountAlreadyExistsError:
                outcomes.append("exists")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(attempt, range(10)))

        assert outcomes.count("created") == 1
        assert outcomes.count("exists") == 9
        assert self.service.storage.count("accounts") == 1
