import datetime as dt

import pytest

from auth import User
from conftest import SAMPLE_CSV
from services.complaint_service import ComplaintService, can_view
from services.complaint_store import InMemoryComplaintStore, SqlComplaintStore, configure_store
from services.data_service import DataService


@pytest.fixture(params=["sql", "memory"])
def store(request):
    if request.param == "sql":
        return SqlComplaintStore(request.getfixturevalue("db_session"))
    return InMemoryComplaintStore()


class TestComplaintStore:
    def test_create_and_get(self, store):
        row = store.create_complaint(user_id="u1", subject="Leak", category="Water", priority="high")
        got = store.get_complaint(row.id)
        assert got.subject == "Leak"
        assert got.status == "pending"
        assert got.resolved_at is None
        assert [u.message for u in got.updates] == ["Complaint submitted successfully"]

    def test_get_unknown(self, store):
        assert store.get_complaint("missing") is None
        assert store.update_complaint("missing", status="resolved") is None
        assert store.add_feedback("missing", rating=3) is None

    def test_resolved_at_follows_status(self, store):
        row = store.create_complaint(user_id="u1", subject="Leak", category="Water")
        resolved = store.update_complaint(row.id, status="resolved", updated_by="staff")
        assert resolved.resolved_at is not None
        assert resolved.updates[-1].message == "Status changed to resolved"
        reopened = store.update_complaint(row.id, status="inProgress")
        assert reopened.resolved_at is None
        assigned = store.update_complaint(row.id, assigned_department="Sanitation")
        assert assigned.status == "inProgress"
        assert assigned.assigned_department == "Sanitation"
        assert assigned.updates[-1].message == "Assigned to Sanitation"

    def test_filters(self, store):
        a = store.create_complaint(user_id="u1", subject="A", category="Water", assigned_department="Water Supply")
        store.create_complaint(user_id="u2", subject="B", category="Roads", assigned_department="Public Works")
        store.update_complaint(a.id, status="resolved")
        assert [c.subject for c in store.fetch_complaints(user_id="u1")] == ["A"]
        assert [c.subject for c in store.fetch_complaints(department="Public Works")] == ["B"]
        assert [c.subject for c in store.fetch_complaints(statuses=("resolved",))] == ["A"]
        assert [c.subject for c in store.fetch_complaints(category="Roads")] == ["B"]
        assert store.fetch_complaints(submitted_from=dt.datetime.utcnow() + dt.timedelta(days=1)) == []

    def test_feedback_carries_complaint_context(self, store):
        row = store.create_complaint(user_id="u1", subject="A", category="Water", assigned_department="Water Supply")
        store.add_feedback(row.id, rating=4, comment="ok")
        fb = store.fetch_feedback(department="Water Supply")
        assert [(f.rating, f.comment, f.category, f.complaint_id) for f in fb] == [(4, "ok", "Water", row.id)]
        assert store.fetch_feedback(department="Sanitation") == []

    def test_import_skips_duplicates(self, store):
        rows = [
            {"id": "X-1", "subject": "one", "submitted_at": dt.datetime(2026, 1, 1), "rating": 5},
            {"id": "X-1", "subject": "dup in batch"},
            {"id": "X-2", "subject": "two", "status": "resolved", "resolved_at": dt.datetime(2026, 1, 3)},
        ]
        assert store.import_rows(rows) == (2, 1)
        assert store.import_rows(rows[:1]) == (0, 1)
        assert store.get_complaint("X-1").feedback[0].rating == 5
        assert store.get_complaint("X-2").resolved_at == dt.datetime(2026, 1, 3)


class TestDataService:
    def test_reads_sample_csv(self):
        rows = DataService().read_complaint_rows(str(SAMPLE_CSV))
        assert len(rows) == 38
        first = rows[0]
        assert first["id"] == "SUL-0001"
        assert first["status"] == "resolved"
        assert first["submitted_at"] == dt.datetime(2026, 1, 5, 9, 15)
        assert first["rating"] == 4
        pending = [r for r in rows if r["status"] == "pending"]
        assert all(r["resolved_at"] is None for r in pending)

    def test_ingest_into_memory_store(self):
        store = InMemoryComplaintStore()
        svc = DataService()
        assert svc.has_any_data(store) is False
        result = svc.ingest_csv(store, str(SAMPLE_CSV))
        assert result.inserted == 38
        assert svc.ingest_csv(store, str(SAMPLE_CSV)).skipped_duplicates == 38
        assert svc.has_any_data(store) is True

    def test_csv_without_subject_is_rejected(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("id,category\n1,Water\n", encoding="utf-8")
        with pytest.raises(ValueError):
            DataService().read_complaint_rows(str(path))


class TestConfigureStore:
    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            configure_store("redis")


class TestComplaintService:
    def test_visibility(self):
        citizen = User(id="c1", username="c", role="citizen")
        authority = User(id="a1", username="a", role="authority", department="Water Supply")
        admin = User(id="x", username="admin", role="admin")
        assert can_view(citizen, "c1", None) is True
        assert can_view(citizen, "c2", None) is False
        assert can_view(authority, "c2", "Water Supply") is True
        assert can_view(authority, "c2", "Sanitation") is False
        assert can_view(admin, "anyone", None) is True

    def test_writes_invalidate_cached_lists(self, fake_cache):
        store = InMemoryComplaintStore()
        citizen = User(id="c1", username="c", role="citizen")
        svc = ComplaintService(store, cache=fake_cache)
        assert svc.list_for_user(citizen) == []
        svc.submit(citizen, subject="Leak", category="Water")
        assert [c["subject"] for c in svc.list_for_user(citizen)] == ["Leak"]

    def test_staff_update_refreshes_citizen_view(self, fake_cache):
        store = InMemoryComplaintStore()
        citizen = User(id="c1", username="c", role="citizen")
        admin = User(id="x", username="admin", role="admin")
        svc = ComplaintService(store, cache=fake_cache)
        created = svc.submit(citizen, subject="Leak", category="Water")
        assert svc.track(created["id"], citizen)["status"] == "pending"
        svc.list_for_user(citizen)
        svc.update(admin, created["id"], status="resolved")
        assert svc.track(created["id"], citizen)["status"] == "resolved"
        assert svc.list_for_user(citizen)[0]["status"] == "resolved"

    def test_track_hides_other_citizens_rows(self, fake_cache):
        store = InMemoryComplaintStore()
        owner = User(id="c1", username="c", role="citizen")
        other = User(id="c2", username="d", role="citizen")
        svc = ComplaintService(store, cache=fake_cache)
        created = svc.submit(owner, subject="Leak", category="Water")
        assert svc.track(created["id"], owner) is not None
        assert svc.track(created["id"], other) is None

    def test_feedback_only_by_owner(self):
        store = InMemoryComplaintStore()
        owner = User(id="c1", username="c", role="citizen")
        other = User(id="c2", username="d", role="citizen")
        svc = ComplaintService(store)
        created = svc.submit(owner, subject="Leak", category="Water")
        assert svc.add_feedback(other, created["id"], rating=5) is None
        assert svc.add_feedback(owner, created["id"], rating=5, comment="thanks") == {"rating": 5, "comment": "thanks"}
