import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool


def _sqlite_session_factory():
    from reconciler.models.base import create_session_factory, init_db

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return create_session_factory(engine)


class _LedgerContract:
    """Behaviour shared by every ledger backend"""

    def make_ledger(self):
        raise NotImplementedError

    def test_lookup_missing_returns_none(self):
        ledger = self.make_ledger()
        self.assertIsNone(ledger.lookup("nope"))
        self.assertIsNone(ledger.lookup_by_target("nope"))

    def test_upsert_creates_then_refreshes_only_fingerprint(self):
        from reconciler.services.ledger import LedgerEntry

        ledger = self.make_ledger()
        ledger.upsert(LedgerEntry("1", "1", "9", last_fingerprint="a", is_derived_item=True))

        with self.assertLogs("reconciler.services.ledger", level="WARNING"):
            stored = ledger.upsert(LedgerEntry("1", "1", "10", last_fingerprint="b"))

        self.assertEqual(stored.target_id, "9")
        self.assertEqual(stored.last_fingerprint, "b")
        self.assertTrue(stored.is_derived_item)
        self.assertEqual(ledger.lookup("1"), stored)
        self.assertEqual(ledger.lookup_by_target("9").tracking_key, "1")
        self.assertEqual(len(ledger.entries()), 1)

    def test_last_sync_round_trips_as_utc(self):
        ledger = self.make_ledger()
        self.assertIsNone(ledger.get_last_sync())

        when = datetime(2025, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        ledger.set_last_sync(when)

        self.assertEqual(ledger.get_last_sync(), datetime(2025, 5, 1, 10, 0, tzinfo=timezone.utc))


class InMemoryLedgerTests(_LedgerContract, unittest.TestCase):
    def make_ledger(self):
        from reconciler.services.ledger import InMemoryLedger

        return InMemoryLedger()


class SqlLedgerTests(_LedgerContract, unittest.TestCase):
    def make_ledger(self):
        from reconciler.services.ledger import SqlLedger

        return SqlLedger(_sqlite_session_factory())

    def test_entries_survive_a_new_ledger_instance(self):
        from reconciler.services.ledger import LedgerEntry, SqlLedger

        factory = _sqlite_session_factory()
        SqlLedger(factory).upsert(LedgerEntry("1", "1", "9", last_fingerprint="a"))
        SqlLedger(factory).set_last_sync(datetime(2025, 1, 1, tzinfo=timezone.utc))

        reopened = SqlLedger(factory)
        self.assertEqual(reopened.lookup("1").target_id, "9")
        self.assertEqual(reopened.get_last_sync(), datetime(2025, 1, 1, tzinfo=timezone.utc))


class EngineWithSqlLedgerTests(unittest.IsolatedAsyncioTestCase):
    async def test_sync_records_links_in_database(self):
        from fake_providers import FakeProvider, make_issue
        from reconciler.services.ledger import SqlLedger
        from reconciler.services.sync_service import ReconciliationEngine

        ledger = SqlLedger(_sqlite_session_factory())
        source = FakeProvider("src", [make_issue("1")])
        target = FakeProvider("dst")

        await ReconciliationEngine(source, target, ledger).sync()
        target.calls.clear()
        await ReconciliationEngine(source, target, ledger).sync()

        self.assertEqual(ledger.lookup("1").target_id, "100")
        self.assertEqual(target.mutations(), [])
        self.assertIsNotNone(ledger.get_last_sync())


if __name__ == "__main__":
    unittest.main()
