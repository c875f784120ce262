"""
RFP Platform
Supplier domain models.

Models:
    - SupplierContact:   invitation of one supplier organisation to one RFP
    - SupplierResponse:  that supplier's proposal (draft until submitted)

Derived readiness fields on SupplierResponse are written only by
``services.readiness.update_response_readiness``.
"""

import json
from datetime import datetime, timezone

from rfp_platform.models import db


# ── Constants ────────────────────────────────────────────────────────────────

INVITATION_STATUSES = {"PENDING", "SENT", "ACCEPTED", "DECLINED"}
RESPONSE_STATUSES = {"DRAFT", "SUBMITTED"}
READINESS_INDICATORS = {"READY", "CONDITIONAL", "NOT_READY"}


def _iso(value):
    return value.isoformat() if value else None


def _loads(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default


class SupplierContact(db.Model):
    __tablename__ = "supplier_contacts"
    __table_args__ = (
        db.UniqueConstraint("rfp_id", "email", name="uq_supplier_contact_rfp_email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    rfp_id = db.Column(db.Integer, db.ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    organization = db.Column(db.String(200), default="")
    invitation_status = db.Column(db.String(20), nullable=False, default="PENDING")
    portal_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Supplier portal user bound to this invitation",
    )
    invited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    response = db.relationship(
        "SupplierResponse", backref="supplier_contact", uselist=False,
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "rfp_id": self.rfp_id,
            "name": self.name,
            "email": self.email,
            "organization": self.organization,
            "invitation_status": self.invitation_status,
            "portal_user_id": self.portal_user_id,
            "invited_at": _iso(self.invited_at),
            "response_status": self.response.status if self.response else None,
        }

    def __repr__(self):
        return f"<SupplierContact {self.id}: {self.email} → RFP {self.rfp_id}>"


class SupplierResponse(db.Model):
    """
    Supplier proposal.

    ``structured_data_json`` holds the versioned proposal record
    (executive summary, architecture, compliance, pricing, ...).
    """

    __tablename__ = "supplier_responses"

    id = db.Column(db.Integer, primary_key=True)
    supplier_contact_id = db.Column(
        db.Integer, db.ForeignKey("supplier_contacts.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    rfp_id = db.Column(db.Integer, db.ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default="DRAFT")
    structured_data_json = db.Column(db.Text, nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Derived readiness
    readiness_score = db.Column(db.Integer, nullable=True)
    readiness_breakdown_json = db.Column(db.Text, nullable=True)
    compliance_flags_json = db.Column(db.Text, nullable=True)
    missing_requirements_json = db.Column(db.Text, nullable=True)
    readiness_indicator = db.Column(db.String(20), nullable=True)
    readiness_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def compliance_flags(self):
        return _loads(self.compliance_flags_json, [])

    @property
    def missing_requirements(self):
        return _loads(self.missing_requirements_json, [])

    @property
    def readiness_breakdown(self):
        return _loads(self.readiness_breakdown_json, None)

    def to_dict(self, include_data=False):
        d = {
            "id": self.id,
            "supplier_contact_id": self.supplier_contact_id,
            "rfp_id": self.rfp_id,
            "status": self.status,
            "submitted_at": _iso(self.submitted_at),
            "readiness_score": self.readiness_score,
            "readiness_indicator": self.readiness_indicator,
            "readiness_updated_at": _iso(self.readiness_updated_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_data:
            d["structured_data"] = _loads(self.structured_data_json, {})
        return d

    def __repr__(self):
        return f"<SupplierResponse {self.id}: contact={self.supplier_contact_id} {self.status}>"
