"""
RFP Platform
Stage SLA calculator.

Pure functions: no I/O, deterministic for a given RFP state and ``now``.

    days_in_stage = floor((now - entered_at) / 1 day), 0 when never entered
    sla           = rfp.stage_sla_days override (0 included) or stage default
    status        = breached  if days >= sla
                    warning   if days >= 0.75 * sla
                    ok        otherwise, and always when sla is None
"""

from datetime import datetime, timezone

from rfp_platform.utils.helpers import as_utc

# Default SLA per stage, in days.  ARCHIVED has none.
STAGE_SLA_DAYS = {
    "INTAKE": 3,
    "QUALIFICATION": 5,
    "DISCOVERY": 7,
    "DRAFTING": 10,
    "PRICING_LEGAL_REVIEW": 5,
    "EXEC_REVIEW": 3,
    "SUBMISSION": 2,
    "DEBRIEF": 5,
    "ARCHIVED": None,
}

WARNING_RATIO = 0.75

SLA_OK = "ok"
SLA_WARNING = "warning"
SLA_BREACHED = "breached"

_SECONDS_PER_DAY = 86400


def get_sla_for_stage(stage: str) -> int | None:
    """Default SLA in days for *stage*; None for ARCHIVED or unknown stages."""
    return STAGE_SLA_DAYS.get(stage)


def effective_sla(rfp) -> int | None:
    """The RFP's override when set (including 0), else the stage default."""
    if rfp.stage_sla_days is not None:
        return rfp.stage_sla_days
    return get_sla_for_stage(rfp.stage)


def calculate_days_in_stage(rfp, now: datetime | None = None) -> int:
    entered = as_utc(rfp.entered_stage_at or rfp.stage_entered_at)
    if entered is None:
        return 0
    now = as_utc(now) or datetime.now(timezone.utc)
    # Floor, not truncation: an entry timestamp in the future gives a negative count
    return int((now - entered).total_seconds() // _SECONDS_PER_DAY)


def classify_sla(days_in_stage: int, sla: int | None) -> str:
    if sla is None:
        return SLA_OK
    if days_in_stage >= sla:
        return SLA_BREACHED
    if days_in_stage >= WARNING_RATIO * sla:
        return SLA_WARNING
    return SLA_OK


def get_sla_status(rfp, now: datetime | None = None) -> dict:
    """
    SLA status of the RFP's current stage.

    Returns:
        {"status": "ok" | "warning" | "breached",
         "days_in_stage": int,
         "sla": int | None}
    """
    days = calculate_days_in_stage(rfp, now)
    sla = effective_sla(rfp)
    return {
        "status": classify_sla(days, sla),
        "days_in_stage": days,
        "sla": sla,
    }


def is_sla_breached(rfp, now: datetime | None = None) -> bool:
    return get_sla_status(rfp, now)["status"] == SLA_BREACHED
