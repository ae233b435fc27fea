from datetime import datetime, timezone

import pytest

from core.errors import AuthenticationError, ValidationError
from services.attendance import AttendanceService
from services.fees import FeeService
from services.grades import GradeService
from services.reports import ReportService
from services.students import StudentService
from services.sync_service import RetryPolicy, SyncService


NOW = datetime(2025, 3, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture()
def reports(local_store):
    return ReportService(local_store)


def test_empty_reports_have_zero_rates(reports, teacher):
    attendance = reports.generate_report(teacher, "attendance", "2025-01-01", "2025-12-31")
    grades = reports.generate_report(teacher, "grades", None, None)
    fees = reports.generate_report(teacher, "fees", None, None)

    assert attendance.data["summary"]["attendance_rate"] == 0.0
    assert grades.data["summary"]["average_score"] == 0.0
    assert fees.data["summary"]["average_payment"] == 0.0
    assert attendance.has_pending_syncs is False


def test_attendance_report_flags_unsynced_local_data(local_store, reports, teacher):
    service = AttendanceService(local_store)
    service.mark_attendance(teacher, "c1", "s1", "present", "2025-03-10")
    service.mark_attendance(teacher, "c1", "s2", "absent", "2025-03-10")
    service.mark_attendance(teacher, "c1", "s1", "late", "2025-04-02")

    report = reports.generate_report(teacher, "attendance", "2025-03-01", "2025-03-31", synced_only=False)

    summary = report.data["summary"]
    assert summary["total_records"] == 1
    assert summary["total_present"] == 1
    assert summary["total_students"] == 2
    assert summary["attendance_rate"] == 50.0
    assert report.based_on_local_data is True
    assert report.has_pending_syncs is True
    assert report.pending_sync_count == 2
    assert report.date_range == {"start": "2025-03-01", "end": "2025-03-31"}


def test_reports_default_to_synced_records(local_store, remote, reports, accountant):
    fees = FeeService(local_store)
    fees.record_payment(accountant, "s1", 200, "cash", now=NOW)
    SyncService(remote, local_store, policy=RetryPolicy.immediate(), enabled=True).sync_all_tables()
    fees.record_payment(accountant, "s2", 300, "mobile_money", now=NOW)

    synced = reports.generate_report(accountant, "fees", "2025-03-01", "2025-03-31")
    everything = reports.generate_report(accountant, "fees", "2025-03-01", "2025-03-31", synced_only=False)

    assert synced.data["summary"]["total_collected"] == 200
    assert synced.data["summary"]["by_method"] == {"cash": 200}
    assert synced.synced_only is True
    assert synced.based_on_local_data is False
    assert synced.pending_sync_count == 1
    assert everything.data["summary"]["total_collected"] == 500
    assert everything.data["summary"]["pending_payments"] == 1
    assert everything.based_on_local_data is True


def test_unsynced_student_is_left_out_by_default(local_store, reports, admin):
    StudentService(local_store).add_student(admin, {"first_name": "A", "last_name": "One", "class_name": "KG 1"})

    report = reports.generate_report(admin, "students", None, None)

    assert report.data["summary"]["total_students"] == 0
    assert report.data["students"] == []
    assert report.has_pending_syncs is True
    assert report.pending_sync_count == 1


def test_grades_report_filters_by_subject(local_store, reports, teacher):
    grades = GradeService(local_store)
    grades.enter_grade(teacher, "s1", "Akua", "c1", "math", "exam", 90, 100, date="2025-03-02")
    grades.enter_grade(teacher, "s2", "Yaw", "c1", "math", "exam", 50, 100, date="2025-03-02")
    grades.enter_grade(teacher, "s1", "Akua", "c1", "eng", "exam", 30, 100, date="2025-03-02")

    report = reports.generate_report(teacher, "grades", None, None, {"subject_id": "math"}, synced_only=False)

    summary = report.data["summary"]
    assert summary["total_grades"] == 2
    assert summary["average_score"] == 70.0
    assert summary["grade_distribution"]["A"] == 1
    assert summary["grade_distribution"]["D"] == 1


def test_students_report_groups_by_class(local_store, reports, admin):
    students = StudentService(local_store)
    students.add_student(admin, {"first_name": "A", "last_name": "One", "class_name": "KG 1"})
    students.add_student(admin, {"first_name": "B", "last_name": "Two", "class_name": "KG 1"})
    students.add_student(admin, {"first_name": "C", "last_name": "Three", "class_name": "KG 2", "status": "inactive"})

    summary = reports.generate_report(admin, "students", None, None, synced_only=False).data["summary"]

    assert summary["total_students"] == 3
    assert summary["by_class"] == {"KG 1": 2, "KG 2": 1}
    assert summary["status_distribution"]["inactive"] == 1


def test_report_validation(reports, teacher):
    with pytest.raises(ValidationError):
        reports.generate_report(teacher, "payroll", None, None)
    with pytest.raises(ValidationError):
        reports.generate_report(teacher, "fees", "2025-05-01", "2025-04-01")
    with pytest.raises(AuthenticationError):
        reports.generate_report(None, "fees", None, None)


def test_generating_a_report_queues_nothing(local_store, reports, teacher):
    reports.generate_report(teacher, "attendance", None, None)
    assert local_store.get_pending_sync_items() == []


def test_dashboard_summary(local_store, reports, admin, teacher, accountant):
    students = StudentService(local_store)
    s1 = students.add_student(admin, {"first_name": "A", "last_name": "One", "class_name": "KG 1"})
    students.add_student(admin, {"first_name": "B", "last_name": "Two", "class_name": "KG 1", "status": "inactive"})
    students.submit_application({"first_name": "C", "last_name": "Three", "parent_name": "P", "parent_phone": "1"})
    AttendanceService(local_store).mark_attendance(teacher, "c1", s1, "present", "2025-03-15")
    fees = FeeService(local_store)
    fees.set_student_fees(accountant, s1, 1000, due_date="2025-03-01")
    fees.set_student_fees(accountant, "s-other", 500, due_date="2025-03-01")
    fees.record_payment(accountant, s1, 250, "cash", now=NOW)

    summary = reports.dashboard_summary(NOW)

    assert summary["total_students"] == 2
    assert summary["active_students"] == 1
    assert summary["pending_applications"] == 1
    assert summary["attendance_today"] == {"present": 1, "marked": 1, "rate": 100.0}
    assert summary["collected_this_month"] == 250
    assert summary["outstanding_fees"] == 1250
    assert summary["overdue_accounts"] == 1
    assert summary["pending_sync_count"] == len(local_store.get_pending_sync_items())
