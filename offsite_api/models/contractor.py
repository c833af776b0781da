# offsite_api/models/contractor.py
import enum
from datetime import datetime
from offsite_api.extensions import db


class Contractor(db.Model):
    __tablename__ = "contractors"

    id           = db.Column(db.Integer, primary_key=True)
    user_id      = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    company_name = db.Column(db.String(200), nullable=True)
    gst_number   = db.Column(db.String(20), nullable=True)
    created_at   = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship("User", lazy="joined")
    contracts = db.relationship(
        "ContractorContract",
        back_populates="contractor",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ContractorContract(db.Model):
    __tablename__ = "contractor_contracts"

    id                      = db.Column(db.Integer, primary_key=True)
    contractor_id           = db.Column(db.Integer, db.ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id              = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    labour_count_per_day    = db.Column(db.Integer, nullable=False, default=0)
    rate_per_labour_per_day = db.Column(db.Numeric(14, 2), nullable=False)
    gst_rate                = db.Column(db.Numeric(5, 2), nullable=False, default=18)
    start_date              = db.Column(db.Date, nullable=False)
    end_date                = db.Column(db.Date, nullable=True)  # open-ended when NULL
    is_active               = db.Column(db.Boolean, nullable=False, default=True)
    created_by              = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at              = db.Column(db.DateTime, default=datetime.utcnow)

    contractor = db.relationship("Contractor", back_populates="contracts")

    def to_dict(self):
        return {
            "id": self.id,
            "contractor_id": self.contractor_id,
            "project_id": self.project_id,
            "labour_count_per_day": self.labour_count_per_day,
            "rate_per_labour_per_day": str(self.rate_per_labour_per_day),
            "gst_rate": str(self.gst_rate),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_active": bool(self.is_active),
        }


class Labour(db.Model):
    __tablename__ = "labours"

    id             = db.Column(db.Integer, primary_key=True)
    code           = db.Column(db.String(20), unique=True, nullable=False)  # LAB0001
    contractor_id  = db.Column(db.Integer, db.ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id     = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=True)
    name           = db.Column(db.String(200), nullable=False)
    phone          = db.Column(db.String(20), nullable=True)
    photo_url      = db.Column(db.String(500), nullable=True)
    face_embedding = db.Column(db.JSON, nullable=True)
    is_active      = db.Column(db.Boolean, nullable=False, default=True)
    created_at     = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "contractor_id": self.contractor_id,
            "project_id": self.project_id,
            "name": self.name,
            "phone": self.phone,
            "photo_url": self.photo_url,
            "has_face": bool(self.face_embedding),
            "is_active": bool(self.is_active),
        }


class LabourAttendance(db.Model):
    """One row per (labour, calendar date); re-uploads update in place."""
    __tablename__ = "labour_attendance"

    id            = db.Column(db.Integer, primary_key=True)
    contractor_id = db.Column(db.Integer, db.ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False)
    project_id    = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False)
    labour_id     = db.Column(db.Integer, db.ForeignKey("labours.id", ondelete="CASCADE"), nullable=False)
    work_date     = db.Column(db.Date, nullable=False)
    present       = db.Column(db.Boolean, nullable=False, default=False)
    face_matched  = db.Column(db.Boolean, nullable=False, default=False)
    match_score   = db.Column(db.Float, nullable=True)

    latitude             = db.Column(db.Float, nullable=True)
    longitude            = db.Column(db.Float, nullable=True)
    distance_from_site_m = db.Column(db.Float, nullable=True)
    geofence_valid       = db.Column(db.Boolean, nullable=True)

    group_photo_url = db.Column(db.String(500), nullable=True)
    marked_by       = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at      = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at      = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("labour_id", "work_date", name="uq_labour_attendance_labour_date"),
        db.Index("ix_labour_attendance_window", "contractor_id", "project_id", "work_date"),
    )


class InvoiceStatus(str, enum.Enum):
    PENDING_PM_APPROVAL = "PENDING_PM_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DocumentSource(str, enum.Enum):
    GENERATED = "GENERATED"
    UPLOADED = "UPLOADED"


class ContractorInvoice(db.Model):
    __tablename__ = "contractor_invoices"

    id             = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(40), unique=True, nullable=False)
    contractor_id  = db.Column(db.Integer, db.ForeignKey("contractors.id"), nullable=False, index=True)
    project_id     = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    week_start     = db.Column(db.Date, nullable=False)
    week_end       = db.Column(db.Date, nullable=False)

    labour_days    = db.Column(db.Integer, nullable=False)
    blended_rate   = db.Column(db.Numeric(14, 2), nullable=False)
    taxable_amount = db.Column(db.Numeric(14, 2), nullable=False)
    gst_rate       = db.Column(db.Numeric(5, 2), nullable=False)
    gst_amount     = db.Column(db.Numeric(14, 2), nullable=False)
    total_amount   = db.Column(db.Numeric(14, 2), nullable=False)

    status = db.Column(
        db.Enum(InvoiceStatus, native_enum=False, length=30, validate_strings=True),
        nullable=False,
        default=InvoiceStatus.PENDING_PM_APPROVAL,
        index=True,
    )
    approved_by      = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at      = db.Column(db.DateTime, nullable=True)
    rejected_by      = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at      = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    visible_to_owner = db.Column(db.Boolean, nullable=False, default=False)

    document_url         = db.Column(db.String(500), nullable=True)
    document_source      = db.Column(db.Enum(DocumentSource, native_enum=False, length=20), nullable=True)
    document_uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    document_uploaded_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    contractor = db.relationship("Contractor", lazy="joined")
    project = db.relationship("Project", lazy="joined")
