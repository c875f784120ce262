"""
Tests: stage transition validation and stage-entry automation.

Covers:
    - allowed / rejected moves from the transition table
    - unknown stages and same-stage requests never raise
    - every stage pair yields a bool verdict, with a reason when rejected
    - forward guards (incomplete tasks, submission deadline)
    - backward moves carry a warning
    - automated task seeding is idempotent (case/whitespace-insensitive)
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from rfp_platform.models import db
from rfp_platform.models.rfp import STAGE_ORDER, STAGE_TRANSITIONS, StageTask
from rfp_platform.services.stage_automation import (
    generate_stage_tasks,
    get_automation_tasks_for_stage,
    is_automation_task,
    run_stage_automations,
)
from rfp_platform.services.stage_transition import (
    allowed_next_stages,
    is_forward_move,
    validate_stage_transition,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Table-level validation (no RFP)
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionTable:
    def test_forward_move_allowed(self):
        result = validate_stage_transition("INTAKE", "QUALIFICATION")
        assert result["valid"] is True
        assert result["reason"] is None
        assert result["warning"] is None
        assert result["required_tasks_incomplete"] == []

    def test_skipping_a_stage_rejected(self):
        result = validate_stage_transition("INTAKE", "DRAFTING")
        assert result["valid"] is False
        assert "Qualification" in result["reason"]

    def test_backward_move_allowed_with_warning(self):
        result = validate_stage_transition("DISCOVERY", "QUALIFICATION")
        assert result["valid"] is True
        assert "reopens" in result["warning"]

    def test_two_steps_back_rejected(self):
        assert validate_stage_transition("DRAFTING", "QUALIFICATION")["valid"] is False

    def test_archived_is_terminal(self):
        result = validate_stage_transition("ARCHIVED", "INTAKE")
        assert result["valid"] is False
        assert "terminal" in result["reason"]

    def test_same_stage_rejected(self):
        result = validate_stage_transition("DRAFTING", "DRAFTING")
        assert result["valid"] is False
        assert "already" in result["reason"]

    @pytest.mark.parametrize("current,requested", [
        ("BOGUS", "INTAKE"),
        ("INTAKE", "BOGUS"),
        (None, "INTAKE"),
        ("INTAKE", None),
        ("INTAKE", 42),
    ])
    def test_unknown_stages_never_raise(self, current, requested):
        result = validate_stage_transition(current, requested)
        assert result["valid"] is False
        assert result["from"] == current
        assert result["to"] == requested

    def test_every_table_entry_is_a_known_stage(self):
        for stage, targets in STAGE_TRANSITIONS.items():
            assert stage in STAGE_ORDER
            assert all(t in STAGE_ORDER for t in targets)

    def test_allowed_next_stages_is_a_copy(self):
        nxt = allowed_next_stages("DRAFTING")
        nxt.append("X")
        assert "X" not in STAGE_TRANSITIONS["DRAFTING"]


# ═════════════════════════════════════════════════════════════════════════════
# Guards (RFP in the database)
# ═════════════════════════════════════════════════════════════════════════════


class TestForwardGuards:
    def test_incomplete_tasks_block_forward(self, make_rfp):
        rfp = make_rfp(stage="DISCOVERY")
        db.session.add(StageTask(rfp_id=rfp.id, stage="DISCOVERY", title="Interview stakeholders"))
        db.session.add(StageTask(rfp_id=rfp.id, stage="DISCOVERY", title="Map processes", completed=True))
        db.session.flush()

        result = validate_stage_transition("DISCOVERY", "DRAFTING", rfp.id)
        assert result["valid"] is False
        assert result["required_tasks_incomplete"] == ["Interview stakeholders"]
        assert "1 task(s)" in result["reason"]

    def test_incomplete_tasks_do_not_block_backward(self, make_rfp):
        rfp = make_rfp(stage="DISCOVERY")
        db.session.add(StageTask(rfp_id=rfp.id, stage="DISCOVERY", title="Open item"))
        db.session.flush()
        assert validate_stage_transition("DISCOVERY", "QUALIFICATION", rfp.id)["valid"] is True

    def test_tasks_of_other_stages_ignored(self, make_rfp):
        rfp = make_rfp(stage="DISCOVERY")
        db.session.add(StageTask(rfp_id=rfp.id, stage="INTAKE", title="Old item"))
        db.session.flush()
        assert validate_stage_transition("DISCOVERY", "DRAFTING", rfp.id)["valid"] is True

    def test_submission_requires_deadline(self, make_rfp):
        rfp = make_rfp(stage="EXEC_REVIEW")
        result = validate_stage_transition("EXEC_REVIEW", "SUBMISSION", rfp.id)
        assert result["valid"] is False
        assert "deadline" in result["reason"]

        rfp.submission_end = NOW + timedelta(days=5)
        db.session.flush()
        assert validate_stage_transition("EXEC_REVIEW", "SUBMISSION", rfp.id)["valid"] is True


STAGE_PAIRS = list(itertools.product(STAGE_ORDER, STAGE_ORDER))


class TestEveryStagePair:
    @pytest.fixture()
    def rfp_with_open_tasks(self, make_rfp):
        rfp = make_rfp(stage="INTAKE")
        for stage in STAGE_ORDER:
            db.session.add(StageTask(rfp_id=rfp.id, stage=stage, title=f"Open {stage.lower()} item"))
        db.session.flush()
        return rfp

    @staticmethod
    def _check(result, current, requested):
        assert isinstance(result["valid"], bool)
        assert result["from"] == current
        assert result["to"] == requested
        if result["valid"]:
            assert requested in STAGE_TRANSITIONS.get(current, [])
        else:
            assert isinstance(result["reason"], str) and result["reason"]

    @pytest.mark.parametrize("current,requested", STAGE_PAIRS)
    def test_table_only(self, current, requested):
        self._check(validate_stage_transition(current, requested), current, requested)

    @pytest.mark.parametrize("current,requested", STAGE_PAIRS)
    def test_with_incomplete_tasks(self, rfp_with_open_tasks, current, requested):
        result = validate_stage_transition(current, requested, rfp_with_open_tasks.id)
        self._check(result, current, requested)
        if requested in STAGE_TRANSITIONS.get(current, []) and is_forward_move(current, requested):
            assert result["valid"] is False
            assert result["required_tasks_incomplete"] == [f"Open {current.lower()} item"]


# ═════════════════════════════════════════════════════════════════════════════
# Stage automation
# ═════════════════════════════════════════════════════════════════════════════


class TestStageAutomation:
    def test_automation_tasks_lookup(self):
        assert get_automation_tasks_for_stage("DISCOVERY") == ["Set up Discovery Workshop"]
        assert get_automation_tasks_for_stage("INTAKE") == []
        assert get_automation_tasks_for_stage("UNKNOWN") == []

    def test_is_automation_task_ignores_case_and_space(self):
        assert is_automation_task("  set UP discovery workshop ", "DISCOVERY")
        assert not is_automation_task("Set up Discovery Workshop", "DRAFTING")

    def test_seeds_tasks_on_entry(self, make_rfp):
        rfp = make_rfp(stage="DISCOVERY")
        created = run_stage_automations(rfp.id, "DISCOVERY")
        assert [t.title for t in created] == ["Set up Discovery Workshop"]
        assert created[0].is_automated is True
        assert created[0].completed is False

    def test_seeding_is_idempotent(self, make_rfp):
        rfp = make_rfp(stage="DISCOVERY")
        run_stage_automations(rfp.id, "DISCOVERY")
        assert run_stage_automations(rfp.id, "DISCOVERY") == []
        assert StageTask.query.filter_by(rfp_id=rfp.id, stage="DISCOVERY").count() == 1

    def test_existing_title_with_other_case_not_duplicated(self, make_rfp):
        rfp = make_rfp(stage="DISCOVERY")
        db.session.add(StageTask(rfp_id=rfp.id, stage="DISCOVERY", title="SET UP DISCOVERY WORKSHOP  "))
        db.session.flush()
        assert run_stage_automations(rfp.id, "DISCOVERY") == []

    def test_stage_without_automation_creates_nothing(self, make_rfp):
        rfp = make_rfp(stage="PRICING_LEGAL_REVIEW")
        assert run_stage_automations(rfp.id, "PRICING_LEGAL_REVIEW") == []

    def test_template_generation_dedupes(self, make_rfp):
        rfp = make_rfp()
        first = generate_stage_tasks(rfp.id, "INTAKE")
        second = generate_stage_tasks(rfp.id, "INTAKE")
        assert len(first) == 4
        assert second == []
        assert all(not t.is_automated for t in first)
