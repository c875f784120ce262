"""
RFP Platform
Supplier response readiness.

Two calculators:
    - calculate_detailed_readiness: weighted category coverage of the
      response's structured data (0-100), compliance flags and missing
      requirements.  Flags annotate; they never change the score.
    - classify_supplier_readiness: READY / CONDITIONAL / NOT_READY from
      mandatory, compliance, risk, pricing and coverage signals.

``update_response_readiness`` is the only function here that writes.
"""

import json
import logging
from datetime import datetime, timezone

from rfp_platform.models import db
from rfp_platform.models.activity import log_activity
from rfp_platform.models.supplier import SupplierResponse
from rfp_platform.services.rfp_service import actor_role_of, ensure_mutable
from rfp_platform.utils.helpers import get_or_raise
from rfp_platform.utils.json_records import dump_record, load_record, strip_version

logger = logging.getLogger(__name__)

STRUCTURED_DATA_VERSION = 1
READINESS_BREAKDOWN_VERSION = 1

CATEGORY_WEIGHTS = {
    "functional": 0.25,
    "technical": 0.25,
    "compliance": 0.30,
    "integration": 0.10,
    "sla": 0.10,
    "pricing": 0.0,
}

LOW_COVERAGE_THRESHOLD = 50

# category key → (label, total items, [(field, items credited), ...])
CATEGORY_ITEMS = {
    "functional": ("Functional Requirements", 10, [
        ("executive_summary", 1), ("requirements_coverage", 3), ("features", 2),
        ("capabilities", 2), ("use_cases", 2),
    ]),
    "technical": ("Technical Requirements", 8, [
        ("architecture", 2), ("infrastructure", 2), ("scalability", 1),
        ("performance", 1), ("reliability", 1), ("deployment", 1),
    ]),
    "integration": ("Integration Requirements", 6, [
        ("integrations", 2), ("apis", 2), ("data_formats", 1), ("migration_plan", 1),
    ]),
    "compliance": ("Compliance & Security", 12, [
        ("security", 3), ("compliance", 3), ("certifications", 2),
        ("data_privacy", 2), ("audit_trails", 1), ("disaster_recovery", 1),
    ]),
    "sla": ("Support & SLAs", 6, [
        ("sla", 2), ("support", 2), ("uptime", 1), ("response_time", 1),
    ]),
    "pricing": ("Pricing Structure", 5, [
        ("pricing", 2), ("pricing_model", 1), ("payment_terms", 1), ("discounts", 1),
    ]),
}

# (field, requirement, category key, severity, suggested fix)
REQUIRED_SECTIONS = [
    ("executive_summary", "Executive Summary", "functional", "critical",
     "Provide a 2-3 paragraph executive summary of your solution"),
    ("requirements_coverage", "Requirements Coverage Matrix", "functional", "critical",
     "Map each RFP requirement to your solution capabilities"),
    ("architecture", "Solution Architecture", "technical", "important",
     "Provide architecture diagrams and technical specifications"),
    ("scalability", "Scalability Plan", "technical", "important",
     "Describe how your solution scales with user growth"),
    ("security", "Security Documentation", "compliance", "critical",
     "Provide security whitepaper and penetration test results"),
    ("certifications", "Compliance Certifications", "compliance", "critical",
     "Upload SOC 2, ISO 27001, and other relevant certifications"),
    ("integrations", "Integration Capabilities", "integration", "important",
     "List all supported integrations and APIs"),
    ("sla", "Service Level Agreement", "sla", "important",
     "Provide detailed SLA commitments with uptime guarantees"),
]


# ── Structured data records ──────────────────────────────────────────────────

_CAMEL_FIELDS = {
    "executiveSummary": "executive_summary",
    "requirementsCoverage": "requirements_coverage",
    "useCases": "use_cases",
    "dataFormats": "data_formats",
    "migrationPlan": "migration_plan",
    "dataPrivacy": "data_privacy",
    "auditTrails": "audit_trails",
    "disasterRecovery": "disaster_recovery",
    "responseTime": "response_time",
    "pricingModel": "pricing_model",
    "paymentTerms": "payment_terms",
    "mandatoryStatus": "mandatory_status",
    "riskFlags": "risk_flags",
    "demoSummary": "demo_summary",
}


def _upgrade_structured_v0(record):
    return {_CAMEL_FIELDS.get(k, k): v for k, v in record.items()}


STRUCTURED_DATA_UPGRADERS = {0: _upgrade_structured_v0}


def load_structured_data(raw):
    """Structured data of a response as a plain dict (current schema, untagged)."""
    return strip_version(load_record(
        raw, current_version=STRUCTURED_DATA_VERSION, upgraders=STRUCTURED_DATA_UPGRADERS,
    ))


def dump_structured_data(data):
    return dump_record(data, STRUCTURED_DATA_VERSION)


# ── Detailed readiness ───────────────────────────────────────────────────────


def _category_breakdown(key, data):
    label, total, items = CATEGORY_ITEMS[key]
    completed = sum(credit for field, credit in items if data.get(field))
    percentage = completed / total * 100
    return {
        "key": key,
        "category": label,
        "score": round(percentage),
        "total_items": total,
        "completed_items": completed,
        "percentage": round(percentage, 2),
        "weight": CATEGORY_WEIGHTS[key],
    }


def _weighted_score(categories):
    weighted = [(c["score"], c["weight"]) for c in categories if c["weight"] > 0]
    total_weight = sum(w for _, w in weighted)
    if not total_weight:
        return 0
    score = round(sum(s * w for s, w in weighted) / total_weight)
    return max(0, min(100, score))


def _mentions(value, needle):
    if not value:
        return False
    if isinstance(value, (list, tuple)):
        return any(needle.lower() in str(v).lower() for v in value)
    return needle.lower() in str(value).lower()


def compliance_flags_for(data, categories):
    """Compliance flags for structured *data*; annotations only."""
    flags = []
    if not _mentions(data.get("certifications"), "SOC 2"):
        flags.append({"flag_type": "MISSING_SOC2", "severity": "high",
                      "message": "SOC 2 Type II certification not provided",
                      "requirement": "Security Compliance"})
    if not _mentions(data.get("data_privacy"), "GDPR"):
        flags.append({"flag_type": "MISSING_GDPR", "severity": "high",
                      "message": "GDPR compliance not documented",
                      "requirement": "Data Privacy & Protection"})
    if not data.get("disaster_recovery"):
        flags.append({"flag_type": "NO_DISASTER_RECOVERY", "severity": "medium",
                      "message": "Disaster recovery plan not provided",
                      "requirement": "Business Continuity"})
    if not data.get("sla") or not data.get("uptime"):
        flags.append({"flag_type": "NO_UPTIME_SLA", "severity": "medium",
                      "message": "Uptime SLA not specified",
                      "requirement": "Service Level Agreement"})
    if not data.get("pricing") or not data.get("pricing_model"):
        flags.append({"flag_type": "INCOMPLETE_PRICING", "severity": "low",
                      "message": "Pricing model not fully detailed",
                      "requirement": "Pricing Structure"})
    for cat in categories:
        if cat["weight"] > 0 and cat["percentage"] < LOW_COVERAGE_THRESHOLD:
            flags.append({"flag_type": "LOW_COVERAGE", "severity": "medium",
                          "message": f"{cat['category']} coverage is {cat['score']}%",
                          "requirement": cat["category"]})
    return flags


def missing_requirements_for(data):
    return [
        {
            "requirement": requirement,
            "category": CATEGORY_ITEMS[category][0],
            "severity": severity,
            "suggested_fix": fix,
        }
        for field, requirement, category, severity, fix in REQUIRED_SECTIONS
        if not data.get(field)
    ]


def calculate_detailed_readiness(structured_data):
    """
    Readiness breakdown of a response's structured data.

    Pure and deterministic: the same input always yields the same result.

    Returns:
        {"overall_score": int 0..100, "categories": [...],
         "compliance_flags": [...], "missing_requirements": [...]}
    """
    data = structured_data if isinstance(structured_data, dict) else {}
    categories = [_category_breakdown(key, data) for key in CATEGORY_ITEMS]
    return {
        "overall_score": _weighted_score(categories),
        "categories": categories,
        "compliance_flags": compliance_flags_for(data, categories),
        "missing_requirements": missing_requirements_for(data),
    }


# ── Readiness classification ─────────────────────────────────────────────────


def classify_supplier_readiness(mandatory_status=None, compliance_findings=None, risk_flags=None,
                                pricing=None, requirements_coverage=None, demo_summary=None):
    """
    Classify a supplier as READY, CONDITIONAL or NOT_READY.

    Starts from 100 and deducts per signal; absent signals are neutral.
    """
    critical, conditional, strengths = [], [], []
    score = 100

    if mandatory_status:
        unmet = mandatory_status.get("unmet_count") or 0
        partial = mandatory_status.get("partially_met_count") or 0
        if unmet >= 3:
            critical.append(f"{unmet} mandatory requirements unmet")
            score -= 40
        elif unmet > 0:
            critical_unmet = [
                r for r in mandatory_status.get("unmet_list") or []
                if r.get("impact") in ("HIGH", "CRITICAL")
            ]
            if critical_unmet:
                critical.append(
                    f"{len(critical_unmet)} critical mandatory requirement(s) unmet: "
                    + ", ".join(str(r.get("requirement", "?")) for r in critical_unmet)
                )
                score -= 35
            else:
                conditional.append(f"{unmet} non-critical mandatory requirement(s) unmet")
                score -= 15
        if partial > 0:
            conditional.append(f"{partial} mandatory requirement(s) partially met")
            score -= 5 * partial
        if unmet == 0 and partial <= 1:
            strengths.append("All mandatory requirements met or substantially met")

    if compliance_findings:
        cscore = compliance_findings.get("overall_compliance_score") or 0
        if cscore < 50:
            critical.append(f"Major compliance failures (score: {cscore}/100)")
            score -= 25
        elif cscore < 70:
            conditional.append(f"Compliance gaps requiring clarification (score: {cscore}/100)")
            score -= 10
        elif cscore >= 85:
            strengths.append(f"Strong compliance posture (score: {cscore}/100)")

    if risk_flags:
        high = [r for r in risk_flags if r.get("severity") == "HIGH"]
        medium = [r for r in risk_flags if r.get("severity") == "MEDIUM"]
        if len(high) >= 3:
            critical.append(
                f"{len(high)} high-severity risks identified: "
                + ", ".join(str(r.get("category", "?")) for r in high)
            )
            score -= 30
        elif high:
            conditional.append(
                f"{len(high)} high-severity risk(s): " + ", ".join(str(r.get("category", "?")) for r in high)
            )
            score -= 12 * len(high)
        if len(medium) > 3:
            conditional.append(f"{len(medium)} medium-severity risks identified")
            score -= 8
        if not high and len(medium) <= 2:
            strengths.append("Low risk profile")

    if pricing and isinstance(pricing, dict):
        hidden = pricing.get("hidden_fee_alerts") or []
        critical_fees = [f for f in hidden if f.get("severity") in ("HIGH", "CRITICAL")]
        if critical_fees:
            conditional.append(
                "Critical hidden fees identified: " + ", ".join(str(f.get("description", "?")) for f in critical_fees)
            )
            score -= 8
        elif not hidden:
            strengths.append("Clear pricing with no hidden fees")

    if requirements_coverage and isinstance(requirements_coverage, dict):
        reqs = requirements_coverage.get("requirements") or []
        not_met = sum(1 for r in reqs if r.get("status") == "Does Not Meet")
        partially = sum(1 for r in reqs if r.get("status") == "Partially Meets")
        if not_met > 5:
            conditional.append(f"{not_met} requirements not met")
            score -= 10
        elif not_met == 0 and partially <= 2:
            strengths.append("Comprehensive requirements coverage")

    if demo_summary and isinstance(demo_summary, dict):
        quality = demo_summary.get("overall_quality_rating")
        if quality in ("Excellent", "Good"):
            strengths.append(f"{quality} demo quality")

    score = max(0, min(100, score))

    if len(critical) >= 3 or score < 50:
        indicator = "NOT_READY"
        rationale = "Supplier is not ready for selection. Critical issues: " + "; ".join(critical)
    elif critical or len(conditional) >= 2 or score < 70:
        indicator = "CONDITIONAL"
        rationale = "Supplier readiness is conditional. Issues to address: " + "; ".join((critical + conditional)[:3])
        if strengths:
            rationale += ". Strengths: " + ", ".join(strengths[:2])
    else:
        indicator = "READY"
        rationale = "Supplier is ready for selection. " + (
            ", ".join(strengths) if strengths else "No major concerns identified"
        ) + "."
        if conditional:
            rationale += " Minor considerations: " + ", ".join(conditional[:2])

    return {
        "indicator": indicator,
        "rationale": rationale,
        "critical_issues": critical,
        "conditional_factors": conditional,
        "strengths": strengths,
        "score": score,
    }


def _count(value):
    """Non-negative int count from supplier data; anything else counts as 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


def _dict_items(value):
    """Dict entries of a supplier-provided list; other shapes are ignored."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _dict_or_none(value):
    return value if isinstance(value, dict) else None


def _classification_signals(data, breakdown):
    """
    Signals for classify_supplier_readiness taken from a response.

    Structured data is supplier-edited, so counts are coerced to ints and
    list entries that are not objects are dropped.
    """
    compliance = next(c for c in breakdown["categories"] if c["key"] == "compliance")

    if isinstance(data.get("risk_flags"), list):
        risk_flags = _dict_items(data["risk_flags"])
    else:
        risk_flags = [
            {"severity": f["severity"].upper(), "category": f["requirement"]}
            for f in breakdown["compliance_flags"]
            if f["flag_type"] != "LOW_COVERAGE"
        ]

    mandatory_status = _dict_or_none(data.get("mandatory_status"))
    if mandatory_status is not None:
        mandatory_status = {
            "unmet_count": _count(mandatory_status.get("unmet_count")),
            "partially_met_count": _count(mandatory_status.get("partially_met_count")),
            "unmet_list": _dict_items(mandatory_status.get("unmet_list")),
        }

    pricing = _dict_or_none(data.get("pricing"))
    if pricing is not None:
        pricing = {**pricing, "hidden_fee_alerts": _dict_items(pricing.get("hidden_fee_alerts"))}

    coverage = _dict_or_none(data.get("requirements_coverage"))
    if coverage is not None:
        coverage = {**coverage, "requirements": _dict_items(coverage.get("requirements"))}

    return {
        "mandatory_status": mandatory_status,
        "compliance_findings": {"overall_compliance_score": compliance["score"]},
        "risk_flags": risk_flags,
        "pricing": pricing,
        "requirements_coverage": coverage,
        "demo_summary": _dict_or_none(data.get("demo_summary")),
    }


# ── Persisted readiness ──────────────────────────────────────────────────────


def readiness_payload(response):
    """Stored readiness of *response* as an API dict."""
    breakdown = None
    if response.readiness_breakdown_json:
        breakdown = strip_version(load_record(
            response.readiness_breakdown_json, current_version=READINESS_BREAKDOWN_VERSION,
        ))
    return {
        "response_id": response.id,
        "supplier_contact_id": response.supplier_contact_id,
        "overall_score": response.readiness_score,
        "indicator": response.readiness_indicator,
        "categories": (breakdown or {}).get("categories", []),
        "classification": (breakdown or {}).get("classification"),
        "compliance_flags": response.compliance_flags,
        "missing_requirements": response.missing_requirements,
        "updated_at": response.readiness_updated_at.isoformat() if response.readiness_updated_at else None,
    }


def update_response_readiness(response_id, *, now=None, actor=None, session=None):
    """
    Recompute readiness from the stored structured data and persist it.

    Raises:
        NotFoundError: unknown response.
        ArchivedReadOnlyError: the response's RFP is archived.
    """
    session = session or db.session
    response = get_or_raise(SupplierResponse, response_id, label="SupplierResponse", session=session)
    ensure_mutable(response.supplier_contact.rfp)

    data = load_structured_data(response.structured_data_json)
    breakdown = calculate_detailed_readiness(data)
    classification = classify_supplier_readiness(**_classification_signals(data, breakdown))

    response.readiness_score = breakdown["overall_score"]
    response.readiness_breakdown_json = dump_record(
        {"categories": breakdown["categories"], "classification": classification},
        READINESS_BREAKDOWN_VERSION,
    )
    response.compliance_flags_json = json.dumps(breakdown["compliance_flags"])
    response.missing_requirements_json = json.dumps(breakdown["missing_requirements"])
    response.readiness_indicator = classification["indicator"]
    response.readiness_updated_at = now or datetime.now(timezone.utc)
    session.flush()

    log_activity(
        event_type="READINESS_RECALCULATED", actor_role=actor_role_of(actor), session=session,
        summary=f"Readiness recalculated: {breakdown['overall_score']} ({classification['indicator']})",
        rfp_id=response.rfp_id, user_id=actor.id if actor is not None else None,
        supplier_contact_id=response.supplier_contact_id, supplier_response_id=response.id,
        details={"score": breakdown["overall_score"], "indicator": classification["indicator"]},
    )
    logger.info("Readiness for response %d: %d (%s)", response.id, breakdown["overall_score"],
                classification["indicator"], extra={"rfp_id": response.rfp_id})
    return readiness_payload(response)
