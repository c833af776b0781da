# offsite_api/models/petty_cash.py
import enum
from datetime import datetime
from offsite_api.extensions import db


class PettyCashStatus(str, enum.Enum):
    PENDING_PM_APPROVAL = "PENDING_PM_APPROVAL"
    PENDING_OWNER_APPROVAL = "PENDING_OWNER_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PettyCashExpense(db.Model):
    __tablename__ = "petty_cash_expenses"

    id           = db.Column(db.Integer, primary_key=True)
    project_id   = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount       = db.Column(db.Numeric(14, 2), nullable=False)
    description  = db.Column(db.Text, nullable=False)
    category     = db.Column(db.String(60), nullable=False)
    receipt_url  = db.Column(db.String(500), nullable=True)

    latitude   = db.Column(db.Float, nullable=True)
    longitude  = db.Column(db.Float, nullable=True)
    geo_label  = db.Column(db.String(255), nullable=True)
    # NULL for both = no fence configured / no coordinates given (unvalidated)
    distance_from_site_m = db.Column(db.Float, nullable=True)
    geofence_valid       = db.Column(db.Boolean, nullable=True)

    status = db.Column(
        db.Enum(PettyCashStatus, native_enum=False, length=30, validate_strings=True),
        nullable=False,
        default=PettyCashStatus.PENDING_PM_APPROVAL,
        index=True,
    )

    pm_approved_by    = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    pm_approved_at    = db.Column(db.DateTime, nullable=True)
    owner_approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    owner_approved_at = db.Column(db.DateTime, nullable=True)
    rejected_by       = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at       = db.Column(db.DateTime, nullable=True)
    rejection_reason  = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_petty_cash_amount_positive"),
    )
