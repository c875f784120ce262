"""
RFP Platform
Snapshot cache model.

Models:
    - SnapshotCacheEntry: last generated read-model per (entity_id, kind),
      e.g. the portfolio overview of a company.
"""

import json
from datetime import datetime, timezone

from rfp_platform.models import db


class SnapshotCacheEntry(db.Model):
    __tablename__ = "snapshot_cache_entries"
    __table_args__ = (
        db.UniqueConstraint("entity_id", "kind", name="uq_snapshot_entity_kind"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(50), nullable=False)
    payload_json = db.Column(db.Text, nullable=False, default="{}")
    generated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    @property
    def payload(self):
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def __repr__(self):
        return f"<SnapshotCacheEntry {self.kind}:{self.entity_id} @ {self.generated_at}>"
