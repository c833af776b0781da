# offsite_api/models/project.py
from datetime import datetime
from offsite_api.extensions import db


class Project(db.Model):
    __tablename__ = "projects"

    id         = db.Column(db.Integer, primary_key=True)
    name       = db.Column(db.String(200), nullable=False)
    location   = db.Column(db.String(255), nullable=True)
    status     = db.Column(db.String(20), nullable=False, default="active")
    owner_id   = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Geofence (opt-in per project). Allowed radius = radius + buffer.
    geo_enabled    = db.Column(db.Boolean, nullable=False, default=False)
    geo_center_lat = db.Column(db.Float, nullable=True)
    geo_center_lon = db.Column(db.Float, nullable=True)
    geo_radius_m   = db.Column(db.Float, nullable=True)
    geo_buffer_m   = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint("geo_radius_m IS NULL OR geo_radius_m >= 0", name="ck_projects_geo_radius"),
        db.CheckConstraint("geo_buffer_m IS NULL OR geo_buffer_m >= 0", name="ck_projects_geo_buffer"),
    )

    owner = db.relationship("User", lazy="joined")
    members = db.relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "status": self.status,
            "owner_id": self.owner_id,
            "geofence": {
                "enabled": bool(self.geo_enabled),
                "center": (
                    {"lat": self.geo_center_lat, "lon": self.geo_center_lon}
                    if self.geo_center_lat is not None and self.geo_center_lon is not None
                    else None
                ),
                "radius_m": self.geo_radius_m,
                "buffer_m": self.geo_buffer_m,
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ProjectMember(db.Model):
    __tablename__ = "project_members"

    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    added_at = db.Column(db.DateTime, default=datetime.utcnow)

    project = db.relationship("Project", back_populates="members")
    user = db.relationship("User", lazy="joined")
