import datetime as dt

import pytest

from conftest import NOW
from services.complaint_store import InMemoryComplaintStore, ProfileRow
from services.reports_service import (
    ReportFilters,
    ReportsService,
    add_months,
    average_resolution_days,
    escalation_reason,
    generate_department_performance,
    generate_time_trends,
    summarize_complaints,
)


def _service(rows, *, profiles=(), cache=None):
    store = InMemoryComplaintStore(rows, profiles)
    return ReportsService(store, cache=cache, now_fn=lambda: NOW)


class TestHelpers:
    def test_add_months_clamps_day(self):
        assert add_months(dt.datetime(2026, 3, 31), -1) == dt.datetime(2026, 2, 28)
        assert add_months(dt.datetime(2025, 12, 15), 1) == dt.datetime(2026, 1, 15)

    def test_average_excludes_rows_without_resolved_at(self, make_complaint):
        rows = [
            make_complaint(status="resolved", resolved_after_days=2),
            make_complaint(status="resolved", resolved_after_days=4),
            make_complaint(status="resolved"),
        ]
        assert average_resolution_days(rows) == pytest.approx(3.0)


class TestSummarizeComplaints:
    def test_empty_set_has_zero_rates(self):
        s = summarize_complaints([])
        assert s["totalComplaints"] == 0
        assert s["resolutionRate"] == 0
        assert s["escalationRate"] == 0
        assert s["averageResolutionTime"] == 0
        assert s["satisfactionScore"] == 0

    def test_ten_complaints_six_resolved(self, make_complaint):
        """6 of 10 resolved gives exactly 60%."""
        rows = (
            [make_complaint(status="resolved", resolved_after_days=2, ratings=(4,)) for _ in range(6)]
            + [make_complaint(status="pending") for _ in range(2)]
            + [make_complaint(status="escalated"), make_complaint(status="inProgress")]
        )
        s = summarize_complaints(rows)
        assert s["totalComplaints"] == 10
        assert s["resolvedComplaints"] == 6
        assert s["pendingComplaints"] == 2
        assert s["resolutionRate"] == 60.0
        assert s["escalationRate"] == 10.0
        assert s["averageResolutionTime"] == pytest.approx(2.0)
        assert s["satisfactionScore"] == 4.0

    def test_six_resolved_four_pending(self, make_complaint):
        rows = [make_complaint(status="resolved", resolved_after_days=1) for _ in range(6)] + [
            make_complaint(status="pending") for _ in range(4)
        ]
        s = summarize_complaints(rows)
        assert s["resolutionRate"] == 60
        assert s["pendingComplaints"] == 4

    def test_breakdowns_and_feedback(self, make_complaint):
        rows = [
            make_complaint(category="Water", priority="high", ratings=(5,)),
            make_complaint(category="Water", priority="low", ratings=(3,)),
            make_complaint(category="Roads", priority="high", department=None),
        ]
        s = summarize_complaints(rows)
        assert s["complaintsByCategory"] == {"Water": 2, "Roads": 1}
        assert s["complaintsByPriority"] == {"high": 2, "low": 1}
        assert s["complaintsByDepartment"] == {"Water Supply": 2}
        assert s["feedbackSummary"] == {
            "totalFeedbacks": 2,
            "averageRating": 4.0,
            "ratingDistribution": {"3": 1, "5": 1},
        }


class TestTrends:
    def test_monthly_buckets(self, make_complaint):
        rows = [
            make_complaint(submitted_days_ago=3, status="resolved", resolved_after_days=1),
            make_complaint(submitted_days_ago=10),
            make_complaint(submitted_days_ago=45),
            make_complaint(submitted_days_ago=400),
        ]
        trends = generate_time_trends(rows, "month", NOW)
        assert len(trends) == 12
        assert trends[-1] == {"month": "May 2026", "submitted": 2, "resolved": 1, "pending": 1}
        assert trends[-2]["submitted"] == 1
        assert sum(t["submitted"] for t in trends) == 3

    def test_weekly_buckets_use_week_key(self, make_complaint):
        trends = generate_time_trends([make_complaint(submitted_days_ago=2)], "week", NOW)
        assert len(trends) == 12
        assert trends[-1]["week"] == "Week 8/6"
        assert trends[-1]["submitted"] == 1


class TestDepartmentPerformance:
    def test_per_department_figures(self, make_complaint):
        rows = [
            make_complaint(department="Water Supply", status="resolved", resolved_after_days=4, ratings=(5,)),
            make_complaint(department="Water Supply", status="pending"),
            make_complaint(department="Sanitation", status="resolved", ratings=(2,)),
            make_complaint(department=None),
        ]
        perf = {d["department"]: d for d in generate_department_performance(rows)}
        assert set(perf) == {"Water Supply", "Sanitation"}
        assert perf["Water Supply"]["totalAssigned"] == 2
        assert perf["Water Supply"]["averageResolutionTime"] == pytest.approx(4.0)
        assert perf["Water Supply"]["satisfactionScore"] == 5.0
        # resolved without resolved_at is excluded from the average
        assert perf["Sanitation"]["averageResolutionTime"] == 0


class TestEscalation:
    @pytest.mark.parametrize(
        "priority,status,days,expected",
        [
            ("urgent", "pending", 8, "Urgent complaint pending for more than 7 days"),
            ("urgent", "pending", 7, ""),
            ("high", "pending", 15, "High priority complaint pending for more than 14 days"),
            ("high", "pending", 10, ""),
            ("low", "pending", 31, "Complaint pending for more than 30 days"),
            ("medium", "escalated", 2, "Manually escalated"),
            ("medium", "pending", 2, ""),
        ],
    )
    def test_reason(self, make_complaint, priority, status, days, expected):
        assert escalation_reason(make_complaint(priority=priority, status=status), days) == expected

    def test_report_lists_only_rows_with_a_reason(self, make_complaint, admin_user):
        rows = [
            make_complaint(priority="urgent", submitted_days_ago=8.5),
            make_complaint(priority="medium", submitted_days_ago=3),
            make_complaint(priority="low", status="escalated", submitted_days_ago=1, department=None),
            make_complaint(priority="urgent", status="resolved", submitted_days_ago=40, resolved_after_days=1),
        ]
        report = _service(rows).generate_escalation_report(admin_user)
        assert [r["escalationReason"] for r in report] == [
            "Urgent complaint pending for more than 7 days",
            "Manually escalated",
        ]
        assert report[0]["daysPending"] == 8
        assert report[1]["assignedDepartment"] == "Unassigned"

    def test_authority_sees_own_department(self, make_complaint, authority_user):
        rows = [
            make_complaint(status="escalated", department="Water Supply"),
            make_complaint(status="escalated", department="Sanitation"),
        ]
        report = _service(rows).generate_escalation_report(authority_user)
        assert len(report) == 1
        assert report[0]["assignedDepartment"] == "Water Supply"


class TestReportsService:
    def test_dashboard_for_admin(self, make_complaint, admin_user):
        rows = [
            make_complaint(status="resolved", resolved_after_days=1, department="Water Supply"),
            make_complaint(status="pending", department="Sanitation"),
            make_complaint(status="pending", submitted_days_ago=60),
        ]
        profiles = [
            ProfileRow(id="p1", username="a", role="citizen", department=None, created_at=NOW - dt.timedelta(days=2)),
            ProfileRow(id="p2", username="b", role="citizen", department=None, created_at=NOW - dt.timedelta(days=90)),
        ]
        report = _service(rows, profiles=profiles).generate_dashboard_report("month", admin_user)
        assert report["totalComplaints"] == 2
        assert report["resolutionRate"] == 50.0
        assert report["activeUsers"] == 1
        assert report["usersByRole"] == {"citizen": 1}
        assert len(report["monthlyTrends"]) == 12
        assert len(report["weeklyTrends"]) == 12
        assert {d["department"] for d in report["departmentPerformance"]} == {"Water Supply", "Sanitation"}

    def test_dashboard_for_authority_is_scoped(self, make_complaint, authority_user):
        rows = [make_complaint(department="Water Supply"), make_complaint(department="Sanitation")]
        report = _service(rows).generate_dashboard_report("year", authority_user)
        assert report["totalComplaints"] == 1
        assert report["departmentPerformance"] == []

    def test_dashboard_rejects_unknown_period(self, admin_user):
        with pytest.raises(ValueError):
            _service([]).generate_dashboard_report("decade", admin_user)

    def test_dashboard_is_served_from_cache(self, make_complaint, admin_user, fake_cache):
        store = InMemoryComplaintStore([make_complaint()])
        svc = ReportsService(store, cache=fake_cache, now_fn=lambda: NOW)
        first = svc.generate_dashboard_report("month", admin_user)
        store.import_rows([{"id": "new", "subject": "s", "submitted_at": NOW - dt.timedelta(days=1)}])
        second = svc.generate_dashboard_report("month", admin_user)
        assert first["totalComplaints"] == second["totalComplaints"] == 1
        assert "dashboard_stats:user=admin-1:period=month" in fake_cache.entries

    def test_complaint_report_filters(self, make_complaint, admin_user):
        rows = [
            make_complaint(category="Water", status="resolved", submitted_days_ago=10, resolved_after_days=3, ratings=(4,)),
            make_complaint(category="Roads", submitted_days_ago=5),
            make_complaint(category="Water", submitted_days_ago=100),
        ]
        f = ReportFilters(start_date=(NOW - dt.timedelta(days=30)).date(), category="Water")
        report = _service(rows).generate_complaint_report(admin_user, f)
        assert len(report) == 1
        assert report[0]["resolutionTime"] == 3
        assert report[0]["userFeedback"] == {"rating": 4, "comment": None}

    def test_complaint_report_for_citizen_shows_own_rows(self, make_complaint, citizen_user):
        rows = [make_complaint(user_id="cit-1"), make_complaint(user_id="someone-else")]
        report = _service(rows).generate_complaint_report(citizen_user)
        assert len(report) == 1

    def test_complaint_report_newest_first(self, make_complaint, admin_user):
        rows = [make_complaint(submitted_days_ago=9), make_complaint(submitted_days_ago=1)]
        report = _service(rows).generate_complaint_report(admin_user)
        assert report[0]["submittedAt"] > report[1]["submittedAt"]

    def test_feedback_summary(self, make_complaint, admin_user):
        rows = [
            make_complaint(category="Water", ratings=(5, 3)),
            make_complaint(category="Roads", department="Public Works", ratings=(1,)),
            make_complaint(category="Roads"),
        ]
        summary = _service(rows).generate_feedback_summary(admin_user)
        assert summary["totalFeedbacks"] == 3
        assert summary["averageRating"] == pytest.approx(3.0)
        assert summary["ratingDistribution"] == {"1": 1, "3": 1, "5": 1}
        assert summary["feedbackByCategory"]["Water"] == {"total": 2, "averageRating": 4.0}

        scoped = _service(rows).generate_feedback_summary(admin_user, department="Public Works")
        assert scoped["totalFeedbacks"] == 1

    def test_user_activity(self, admin_user):
        profiles = [
            ProfileRow(id="1", username="a", role="citizen", department=None, created_at=NOW - dt.timedelta(days=3)),
            ProfileRow(id="2", username="b", role="authority", department="Sanitation", created_at=NOW - dt.timedelta(days=60)),
            ProfileRow(id="3", username="c", role="citizen", department=None, created_at=NOW - dt.timedelta(days=200)),
        ]
        report = _service([], profiles=profiles).generate_user_activity_report(admin_user)
        assert report == {
            "totalUsers": 3,
            "newUsersThisMonth": 1,
            "usersByRole": {"citizen": 2, "authority": 1},
            "usersByDepartment": {"Sanitation": 1},
        }
