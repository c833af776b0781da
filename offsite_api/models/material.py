# offsite_api/models/material.py
import enum
from datetime import datetime
from offsite_api.extensions import db


class MaterialRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class MaterialRequest(db.Model):
    __tablename__ = "material_requests"

    id            = db.Column(db.Integer, primary_key=True)
    project_id    = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    requested_by  = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    material_id   = db.Column(db.String(60), nullable=False, index=True)
    material_name = db.Column(db.String(200), nullable=False)
    quantity      = db.Column(db.Numeric(14, 3), nullable=False)
    unit          = db.Column(db.String(20), nullable=False)
    reason        = db.Column(db.Text, nullable=False)

    status = db.Column(
        db.Enum(MaterialRequestStatus, native_enum=False, length=20, validate_strings=True),
        nullable=False,
        default=MaterialRequestStatus.PENDING,
    )
    anomaly_detected = db.Column(db.Boolean, nullable=False, default=False)
    anomaly_reason   = db.Column(db.String(255), nullable=True)

    approved_by      = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at      = db.Column(db.DateTime, nullable=True)
    rejected_by      = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at      = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_material_requests_lookback", "material_id", "project_id", "status", "created_at"),
        db.CheckConstraint("quantity >= 0", name="ck_material_requests_quantity"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "requested_by": self.requested_by,
            "material_id": self.material_id,
            "material_name": self.material_name,
            "quantity": float(self.quantity) if self.quantity is not None else None,
            "unit": self.unit,
            "reason": self.reason,
            "status": self.status.value if self.status else None,
            "anomaly_detected": bool(self.anomaly_detected),
            "anomaly_reason": self.anomaly_reason,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejected_by": self.rejected_by,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
