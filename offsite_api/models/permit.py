# offsite_api/models/permit.py
import enum
from datetime import datetime
from offsite_api.extensions import db


class PermitStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    OTP_GENERATED = "OTP_GENERATED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class Permit(db.Model):
    __tablename__ = "permits"

    id               = db.Column(db.Integer, primary_key=True)
    project_id       = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    requested_by     = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    task_description = db.Column(db.Text, nullable=False)
    hazard_type      = db.Column(db.String(100), nullable=False)
    safety_measures  = db.Column(db.JSON, nullable=False, default=list)
    notes            = db.Column(db.Text, nullable=True)
    status           = db.Column(
        db.Enum(PermitStatus, native_enum=False, length=20, validate_strings=True),
        nullable=False,
        default=PermitStatus.PENDING,
        index=True,
    )

    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)

    # one-time code: only the werkzeug hash is stored, never serialised
    otp_hash         = db.Column(db.String(255), nullable=True)
    otp_generated_at = db.Column(db.DateTime, nullable=True)
    otp_expires_at   = db.Column(db.DateTime, nullable=True)
    otp_used         = db.Column(db.Boolean, nullable=False, default=False)

    work_started_at = db.Column(db.DateTime, nullable=True)
    completed_at    = db.Column(db.DateTime, nullable=True)
    created_at      = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at      = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
