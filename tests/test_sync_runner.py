import json
import os
import tempfile
import unittest
from unittest.mock import patch

from fake_providers import FakeProvider, make_issue


class _DatabaseTestCase(unittest.TestCase):
    def setUp(self):
        from reconciler.models.base import create_db_engine, create_session_factory, init_db

        self._tmp = tempfile.TemporaryDirectory()
        self.engine = create_db_engine(f"sqlite:///{os.path.join(self._tmp.name, 'test.db')}")
        init_db(self.engine)
        self.SessionLocal = create_session_factory(self.engine)
        self.db = self.SessionLocal()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        self._tmp.cleanup()


class SyncRunnerTests(_DatabaseTestCase):
    def _runner(self, source, target, **settings):
        from reconciler.config import Settings
        from reconciler.services.sync_runner import SyncRunner

        return SyncRunner(self.db, Settings(**settings), providers=(source, target))

    def test_successful_run_is_logged(self):
        from reconciler.models import LedgerEntryRow, SyncLog
        from reconciler.models.sync_log import SyncStatus

        source = FakeProvider("src", [make_issue("1")])
        target = FakeProvider("dst")

        result = self._runner(source, target).run()

        self.assertEqual(result["status"], "success")
        self.assertEqual(result["stats"]["source_to_target"], 1)
        log = self.db.query(SyncLog).one()
        self.assertEqual(log.status, SyncStatus.SUCCESS)
        self.assertEqual(log.direction, "both")
        self.assertEqual(log.source_to_target, 1)
        self.assertEqual(self.db.query(LedgerEntryRow).one().target_id, "100")

    def test_overlapping_run_is_refused_without_writing(self):
        from reconciler.models import LedgerEntryRow, SyncLog
        from reconciler.services import sync_runner

        source = FakeProvider("src", [make_issue("1")])
        target = FakeProvider("dst")

        self.assertTrue(sync_runner._run_lock.acquire(blocking=False))
        try:
            with self.assertRaises(sync_runner.SyncInProgressError):
                self._runner(source, target).run()
        finally:
            sync_runner._run_lock.release()

        self.assertEqual(source.calls, [])
        self.assertEqual(target.calls, [])
        self.assertEqual(self.db.query(SyncLog).count(), 0)
        self.assertEqual(self.db.query(LedgerEntryRow).count(), 0)

        # The lock is free again once the refused run is gone.
        self.assertEqual(self._runner(source, target).run()["status"], "success")

    def test_conflicts_are_persisted_for_resolution(self):
        from reconciler.models import Conflict, SyncLog
        from reconciler.models.sync_log import SyncStatus

        source = FakeProvider("src", [make_issue("1", title="A")])
        target = FakeProvider(
            "dst", [make_issue("9", title="B", provider="dst", external_id="1", external_provider="src")]
        )

        result = self._runner(source, target).run()

        self.assertEqual(result["status"], "conflict")
        conflict = self.db.query(Conflict).one()
        self.assertEqual(conflict.fields, "title")
        self.assertEqual(conflict.source_issue_id, "1")
        self.assertEqual(conflict.target_issue_id, "9")
        self.assertEqual(json.loads(conflict.source_data), {"title": "A"})
        self.assertEqual(json.loads(conflict.target_data), {"title": "B"})
        self.assertFalse(conflict.resolved)
        self.assertEqual(conflict.sync_log_id, self.db.query(SyncLog).one().id)
        self.assertEqual(self.db.query(SyncLog).one().status, SyncStatus.CONFLICT)

    def test_item_errors_make_a_partial_run(self):
        from reconciler.core.errors import TransportError
        from reconciler.models import SyncLog

        source = FakeProvider("src", [make_issue("1", title="one"), make_issue("2", title="two")])
        target = FakeProvider("dst")
        target.failures["create_issue"] = [TransportError("boom")]

        result = self._runner(source, target).run()

        self.assertEqual(result["status"], "partial")
        log = self.db.query(SyncLog).one()
        self.assertEqual(log.errors, 1)
        self.assertIn("boom", json.loads(log.details)[0])

    def test_failed_fetch_is_a_failed_run(self):
        from reconciler.core.errors import TransportError

        source = FakeProvider("src", [make_issue("1")])
        source.failures["get_issues"] = [TransportError("down")]

        result = self._runner(source, FakeProvider("dst")).run()

        self.assertEqual(result["status"], "failed")

    def test_engine_construction_failure_is_logged(self):
        from reconciler.models import SyncLog
        from reconciler.models.sync_log import SyncStatus
        from reconciler.services.sync_runner import SyncRunner

        runner = self._runner(FakeProvider("src"), FakeProvider("dst"))
        with patch.object(SyncRunner, "build_engine", side_effect=RuntimeError("no engine")):
            result = runner.run()

        self.assertEqual(result, {"status": "failed", "error": "no engine"})
        self.assertEqual(self.db.query(SyncLog).one().status, SyncStatus.FAILED)

    def test_assignee_mappings_feed_the_engine(self):
        from reconciler.models import AssigneeMapping

        self.db.add(AssigneeMapping(source_identifier="alice", target_identifier="alice.t"))
        self.db.commit()
        source = FakeProvider("src", [make_issue("1", assignees=["alice"])])
        target = FakeProvider("dst")

        self._runner(source, target).run()

        draft = target.calls_to("create_issue")[0][1]
        self.assertEqual(draft.assignees, ["alice.t"])

    def test_invalid_settings_raise_before_running(self):
        from reconciler.config import Settings
        from reconciler.core.errors import ConfigValidationError
        from reconciler.models import SyncLog
        from reconciler.services.sync_runner import SyncRunner

        with self.assertRaises(ConfigValidationError):
            SyncRunner(self.db, Settings(source_gitlab_url=None)).run()
        self.assertEqual(self.db.query(SyncLog).count(), 0)


class SyncStatusTests(unittest.TestCase):
    def test_status_precedence(self):
        from reconciler.core.results import SyncResult
        from reconciler.models.sync_log import SyncStatus
        from reconciler.services.sync_runner import sync_status

        self.assertEqual(sync_status(SyncResult()), SyncStatus.SUCCESS)
        self.assertEqual(sync_status(SyncResult(conflicts=[object()])), SyncStatus.CONFLICT)
        self.assertEqual(
            sync_status(SyncResult(conflicts=[object()], errors=[Exception()])), SyncStatus.PARTIAL
        )
        self.assertEqual(sync_status(SyncResult(errors=[Exception()], aborted=True)), SyncStatus.FAILED)


if __name__ == "__main__":
    unittest.main()
