"""
Tests: RFP service — creation, stage changes, archive read-only rule, tasks.

Service functions flush only; tests commit where a later read needs it.
"""

from datetime import datetime, timedelta, timezone

import pytest

from rfp_platform.core.exceptions import (
    ArchivedReadOnlyError,
    ConflictError,
    InvalidTransitionError,
    ValidationError,
)
from rfp_platform.models import db
from rfp_platform.models.activity import ActivityLog
from rfp_platform.models.rfp import StageTask
from rfp_platform.services import rfp_service

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _events(rfp_id):
    return [a.event_type for a in ActivityLog.query.filter_by(rfp_id=rfp_id).order_by(ActivityLog.id)]


class TestCreateUpdate:
    def test_create_starts_in_intake(self, buyer):
        rfp = rfp_service.create_rfp({"title": "  Payroll RFP ", "budget": 250000}, actor=buyer, now=NOW)
        assert rfp.stage == "INTAKE"
        assert rfp.title == "Payroll RFP"
        assert rfp.company_id == buyer.company_id
        assert rfp.budget == 250000.0
        assert _events(rfp.id) == ["RFP_CREATED"]

    def test_create_requires_title(self, buyer):
        with pytest.raises(ValidationError):
            rfp_service.create_rfp({"title": "   "}, actor=buyer)

    def test_create_rejects_bad_fields(self, buyer):
        with pytest.raises(ValidationError) as exc:
            rfp_service.create_rfp(
                {"title": "X", "priority": "URGENT", "stage_sla_days": -1, "submission_end": "soon"},
                actor=buyer,
            )
        assert set(exc.value.details) == {"priority", "stage_sla_days", "submission_end"}

    def test_update_rejects_stage_field(self, buyer, make_rfp):
        rfp = make_rfp()
        with pytest.raises(ValidationError):
            rfp_service.update_rfp(rfp.id, {"stage": "DRAFTING"}, actor=buyer)

    def test_update_parses_milestones(self, buyer, make_rfp):
        rfp = make_rfp()
        rfp_service.update_rfp(rfp.id, {"submission_end": "2025-04-01", "stage_sla_days": 0}, actor=buyer)
        assert rfp.submission_end == datetime(2025, 4, 1, tzinfo=timezone.utc)
        assert rfp.stage_sla_days == 0

    def test_extending_deadline_lifts_submission_lock(self, buyer, make_rfp):
        rfp = make_rfp(submission_end=NOW - timedelta(days=1), submissions_locked_at=NOW - timedelta(hours=20))
        rfp_service.update_rfp(rfp.id, {"submission_end": (NOW + timedelta(days=5)).isoformat()},
                               actor=buyer, now=NOW)
        assert rfp.submissions_locked_at is None
        assert _events(rfp.id) == ["RFP_SUBMISSIONS_REOPENED", "RFP_UPDATED"]

    def test_other_updates_keep_submission_lock(self, buyer, make_rfp):
        locked_at = NOW - timedelta(hours=20)
        rfp = make_rfp(submission_end=NOW + timedelta(days=1), submissions_locked_at=locked_at)
        rfp_service.update_rfp(rfp.id, {"title": "Renamed"}, actor=buyer, now=NOW)
        assert rfp.submissions_locked_at is not None


class TestChangeStage:
    def test_forward_move_resets_clock_and_override(self, buyer, make_rfp):
        rfp = make_rfp(stage="QUALIFICATION", entered_days_ago=4, stage_sla_days=9)
        result = rfp_service.change_stage(rfp.id, "DISCOVERY", actor=buyer, now=NOW)
        assert rfp.stage == "DISCOVERY"
        assert rfp.entered_stage_at == NOW
        assert rfp.stage_sla_days is None
        assert [t.title for t in result["automated_tasks"]] == ["Set up Discovery Workshop"]
        assert "RFP_STAGE_CHANGED" in _events(rfp.id)

    def test_invalid_move_raises_with_reason(self, buyer, make_rfp):
        rfp = make_rfp()
        with pytest.raises(InvalidTransitionError) as exc:
            rfp_service.change_stage(rfp.id, "SUBMISSION", actor=buyer)
        assert exc.value.from_stage == "INTAKE"
        assert exc.value.to_stage == "SUBMISSION"
        assert rfp.stage == "INTAKE"

    def test_incomplete_tasks_listed_on_error(self, buyer, make_rfp):
        rfp = make_rfp(stage="DISCOVERY")
        db.session.add(StageTask(rfp_id=rfp.id, stage="DISCOVERY", title="Workshop"))
        db.session.flush()
        with pytest.raises(InvalidTransitionError) as exc:
            rfp_service.change_stage(rfp.id, "DRAFTING", actor=buyer)
        assert exc.value.result["required_tasks_incomplete"] == ["Workshop"]

    def test_backward_move_records_warning(self, buyer, make_rfp):
        rfp = make_rfp(stage="DRAFTING")
        result = rfp_service.change_stage(rfp.id, "DISCOVERY", actor=buyer, now=NOW)
        assert result["transition"]["warning"]
        log = ActivityLog.query.filter_by(rfp_id=rfp.id, event_type="RFP_STAGE_CHANGED").one()
        assert log.details["warning"] == result["transition"]["warning"]

    def test_automation_source_logged_as_auto_advance(self, make_rfp):
        rfp = make_rfp(stage="INTAKE")
        rfp_service.change_stage(rfp.id, "QUALIFICATION", now=NOW, source="automation")
        log = ActivityLog.query.filter_by(rfp_id=rfp.id, event_type="RFP_AUTO_ADVANCED").one()
        assert log.actor_role == "SYSTEM"

    def test_moving_to_archived_archives(self, buyer, make_rfp):
        rfp = make_rfp(stage="DEBRIEF")
        rfp_service.change_stage(rfp.id, "ARCHIVED", actor=buyer, now=NOW)
        assert rfp.is_archived is True
        assert rfp.archived_by_id == buyer.id


class TestArchivedReadOnly:
    @pytest.fixture()
    def archived(self, buyer, make_rfp):
        rfp = make_rfp(stage="DRAFTING")
        task = StageTask(rfp_id=rfp.id, stage="DRAFTING", title="Draft")
        db.session.add(task)
        rfp_service.archive_rfp(rfp.id, actor=buyer, now=NOW)
        db.session.commit()
        return rfp, task

    def test_archive_keeps_stage(self, archived):
        rfp, _ = archived
        assert rfp.is_archived is True
        assert rfp.stage == "DRAFTING"
        assert rfp.archived_at is not None

    def test_update_rejected(self, archived, buyer):
        rfp, _ = archived
        with pytest.raises(ArchivedReadOnlyError):
            rfp_service.update_rfp(rfp.id, {"title": "New"}, actor=buyer)

    def test_stage_change_rejected(self, archived, buyer):
        rfp, _ = archived
        with pytest.raises(ArchivedReadOnlyError):
            rfp_service.change_stage(rfp.id, "PRICING_LEGAL_REVIEW", actor=buyer)

    def test_task_changes_rejected(self, archived, buyer):
        rfp, task = archived
        with pytest.raises(ArchivedReadOnlyError):
            rfp_service.update_task(task.id, {"completed": True}, actor=buyer)
        with pytest.raises(ArchivedReadOnlyError):
            rfp_service.create_task(rfp.id, {"title": "More"}, actor=buyer)
        with pytest.raises(ArchivedReadOnlyError):
            rfp_service.generate_tasks(rfp.id, actor=buyer)

    def test_archiving_twice_rejected(self, archived, buyer):
        rfp, _ = archived
        with pytest.raises(ArchivedReadOnlyError):
            rfp_service.archive_rfp(rfp.id, actor=buyer)


class TestTasks:
    def test_create_task_defaults_to_current_stage(self, buyer, make_rfp):
        rfp = make_rfp(stage="DISCOVERY")
        task = rfp_service.create_task(rfp.id, {"title": "Call CFO"}, actor=buyer)
        assert task.stage == "DISCOVERY"
        assert task.is_automated is False

    def test_duplicate_title_conflicts(self, buyer, make_rfp):
        rfp = make_rfp()
        rfp_service.create_task(rfp.id, {"title": "Call CFO"}, actor=buyer)
        with pytest.raises(ConflictError):
            rfp_service.create_task(rfp.id, {"title": " call cfo"}, actor=buyer)

    def test_complete_and_reopen(self, buyer, make_rfp):
        rfp = make_rfp()
        task = rfp_service.create_task(rfp.id, {"title": "Review"}, actor=buyer)
        rfp_service.update_task(task.id, {"completed": True}, actor=buyer, now=NOW)
        assert task.completed is True
        assert task.completed_at == NOW
        rfp_service.update_task(task.id, {"completed": False}, actor=buyer)
        assert task.completed_at is None

    def test_completed_must_be_boolean(self, buyer, make_rfp):
        rfp = make_rfp()
        task = rfp_service.create_task(rfp.id, {"title": "Review"}, actor=buyer)
        with pytest.raises(ValidationError):
            rfp_service.update_task(task.id, {"completed": "yes"}, actor=buyer)

    def test_rename_onto_existing_title_conflicts(self, buyer, make_rfp):
        rfp = make_rfp()
        alpha = rfp_service.create_task(rfp.id, {"title": "Alpha"}, actor=buyer)
        rfp_service.create_task(rfp.id, {"title": "Beta"}, actor=buyer)
        with pytest.raises(ConflictError):
            rfp_service.update_task(alpha.id, {"title": " beta ", "completed": True}, actor=buyer)
        assert alpha.title == "Alpha"
        assert alpha.completed is False

    def test_rename_same_title_in_other_stage_allowed(self, buyer, make_rfp):
        rfp = make_rfp()
        rfp_service.create_task(rfp.id, {"title": "Beta", "stage": "DISCOVERY"}, actor=buyer)
        alpha = rfp_service.create_task(rfp.id, {"title": "Alpha"}, actor=buyer)
        rfp_service.update_task(alpha.id, {"title": "Beta"}, actor=buyer)
        assert alpha.title == "Beta"

    def test_rename_keeping_own_title(self, buyer, make_rfp):
        rfp = make_rfp()
        task = rfp_service.create_task(rfp.id, {"title": "Alpha"}, actor=buyer)
        rfp_service.update_task(task.id, {"title": "ALPHA"}, actor=buyer)
        assert task.title == "ALPHA"

    def test_completing_tasks_unblocks_forward_move(self, buyer, make_rfp):
        rfp = make_rfp(stage="QUALIFICATION")
        task = rfp_service.create_task(rfp.id, {"title": "Budget check"}, actor=buyer)
        with pytest.raises(InvalidTransitionError):
            rfp_service.change_stage(rfp.id, "DISCOVERY", actor=buyer)
        rfp_service.update_task(task.id, {"completed": True}, actor=buyer)
        rfp_service.change_stage(rfp.id, "DISCOVERY", actor=buyer, now=NOW + timedelta(hours=1))
        assert rfp.stage == "DISCOVERY"
