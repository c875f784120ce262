"""
RFP Platform
Timeline event model.

Models:
    - RfpTimelineEvent: append-only record of one applied timeline action.
      ``event_type`` is the upper-cased action id (e.g. LOCK_SUBMISSIONS);
      the timeline engine treats an existing row as "already applied".
"""

import json
from datetime import datetime, timezone

from rfp_platform.models import db


class RfpTimelineEvent(db.Model):
    __tablename__ = "rfp_timeline_events"
    __table_args__ = (
        db.Index("idx_timeline_event_rfp_type", "rfp_id", "event_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    rfp_id = db.Column(db.Integer, db.ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False)
    event_type = db.Column(db.String(60), nullable=False)
    payload_json = db.Column(db.Text, default="{}")
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def payload(self):
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "rfp_id": self.rfp_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<RfpTimelineEvent {self.id}: {self.event_type} RFP {self.rfp_id}>"
