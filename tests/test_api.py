import os
import tempfile
import unittest

from fastapi.testclient import TestClient


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        from reconciler.main import app
        from reconciler.models.base import create_db_engine, create_session_factory, get_db, init_db

        self._tmp = tempfile.TemporaryDirectory()
        self.engine = create_db_engine(f"sqlite:///{os.path.join(self._tmp.name, 'api.db')}")
        init_db(self.engine)
        self.SessionLocal = create_session_factory(self.engine)

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        self.app = app
        app.dependency_overrides[get_db] = override_get_db
        # No context manager: the lifespan (real database + scheduler) stays off.
        self.client = TestClient(app)

    def tearDown(self):
        self.app.dependency_overrides.clear()
        self.engine.dispose()
        self._tmp.cleanup()


class HealthTests(ApiTestCase):
    def test_health(self):
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")


class AssigneeMappingApiTests(ApiTestCase):
    def test_crud(self):
        created = self.client.post(
            "/api/assignee-mappings/",
            json={"source_identifier": "alice", "target_identifier": "alice.t"},
        )
        self.assertEqual(created.status_code, 200)
        mapping_id = created.json()["id"]

        listed = self.client.get("/api/assignee-mappings/").json()
        self.assertEqual([m["source_identifier"] for m in listed], ["alice"])
        self.assertEqual(self.client.get(f"/api/assignee-mappings/{mapping_id}").status_code, 200)

        deleted = self.client.delete(f"/api/assignee-mappings/{mapping_id}")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.get(f"/api/assignee-mappings/{mapping_id}").status_code, 404)

    def test_duplicate_is_rejected_case_insensitively(self):
        self.client.post(
            "/api/assignee-mappings/",
            json={"source_identifier": "alice", "target_identifier": "alice.t"},
        )

        response = self.client.post(
            "/api/assignee-mappings/",
            json={"source_identifier": "ALICE", "target_identifier": "someone"},
        )

        self.assertEqual(response.status_code, 400)

    def test_blank_identifier_is_rejected(self):
        response = self.client.post(
            "/api/assignee-mappings/",
            json={"source_identifier": "  ", "target_identifier": "x"},
        )

        self.assertEqual(response.status_code, 400)


class SyncApiTests(ApiTestCase):
    def _seed(self):
        from reconciler.models import Conflict, LedgerEntryRow, SyncLog
        from reconciler.models.sync_log import SyncStatus

        db = self.SessionLocal()
        try:
            log = SyncLog(status=SyncStatus.CONFLICT, direction="both", conflicts=1)
            db.add(log)
            db.commit()
            db.add(
                Conflict(
                    sync_log_id=log.id,
                    source_issue_id="1",
                    target_issue_id="9",
                    fields="title",
                    description="Both sides changed: title",
                )
            )
            db.add(LedgerEntryRow(tracking_key="1", source_id="1", target_id="9", last_fingerprint="abc"))
            db.commit()
        finally:
            db.close()

    def test_trigger_with_incomplete_settings_is_a_bad_request(self):
        from unittest.mock import patch

        from reconciler.config import Settings

        with patch("reconciler.services.sync_runner.settings", Settings(source_gitlab_url=None)):
            response = self.client.post("/api/sync/trigger")

        self.assertEqual(response.status_code, 400)

    def test_trigger_while_a_run_is_active_is_a_conflict(self):
        from reconciler.services import sync_runner

        self.assertTrue(sync_runner._run_lock.acquire(blocking=False))
        try:
            response = self.client.post("/api/sync/trigger")
        finally:
            sync_runner._run_lock.release()

        self.assertEqual(response.status_code, 409)
        self.assertEqual(self.client.get("/api/sync/logs").json(), [])

    def test_logs_conflicts_and_ledger(self):
        self._seed()

        logs = self.client.get("/api/sync/logs").json()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0]["status"], "conflict")
        self.assertEqual(self.client.get("/api/sync/logs", params={"status": "success"}).json(), [])
        self.assertEqual(self.client.get("/api/sync/logs", params={"status": "weird"}).status_code, 400)

        conflicts = self.client.get("/api/sync/conflicts", params={"resolved": False}).json()
        self.assertEqual(len(conflicts), 1)
        self.assertEqual(conflicts[0]["fields"], "title")

        ledger = self.client.get("/api/sync/ledger").json()
        self.assertEqual(ledger[0]["tracking_key"], "1")
        self.assertEqual(ledger[0]["last_fingerprint"], "abc")

    def test_resolve_conflict(self):
        self._seed()
        conflict_id = self.client.get("/api/sync/conflicts").json()[0]["id"]

        response = self.client.post(
            f"/api/sync/conflicts/{conflict_id}/resolve",
            json={"resolution_notes": "kept source title"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["resolved"])
        self.assertEqual(response.json()["resolution_notes"], "kept source title")
        self.assertEqual(self.client.get("/api/sync/conflicts", params={"resolved": False}).json(), [])
        self.assertEqual(self.client.post("/api/sync/conflicts/999/resolve").status_code, 404)

    def test_status(self):
        self._seed()

        status = self.client.get("/api/sync/status").json()

        self.assertEqual(status["last_status"], "conflict")
        self.assertEqual(status["ledger_entries"], 1)
        self.assertEqual(status["open_conflicts"], 1)
        self.assertIsNone(status["last_sync_at"])


if __name__ == "__main__":
    unittest.main()
