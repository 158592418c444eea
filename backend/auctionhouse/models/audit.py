from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Audit trail of ledger actions.

    IMMUTABLE: Never updated. Rows are only removed by the explicit
    maintenance purge (audit_service.purge_audit_log).

    details holds JSON text; auction_id / auction_short_name are filled in at
    write time for item, bidder and payment events when the caller omits them.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_object", "object_type", "object_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user = db.Column(db.String(64), nullable=True)
    action = db.Column(db.String(64), nullable=False)
    object_type = db.Column(db.String(32), nullable=False)
    object_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    @property
    def details_dict(self) -> dict:
        if not self.details:
            return {}
        return json.loads(self.details)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user": self.user,
            "action": self.action,
            "object_type": self.object_type,
            "object_id": self.object_id,
            "details": self.details_dict,
            "created_at": to_utc_z(self.created_at),
        }
