# offsite_api/blueprints/projects.py
from __future__ import annotations

from flask import Blueprint

from offsite_api.common.auth import current_actor, requires_perms
from offsite_api.common.errors import Forbidden, ValidationFailed
from offsite_api.common.http import json_body, ok
from offsite_api.common.parsing import as_float
from offsite_api.extensions import db
from offsite_api.models.project import Project, ProjectMember
from offsite_api.models.user import User
from offsite_api.services import geofence
from offsite_api.services.guards import ensure_project_access, ensure_role, get_or_404, is_project_member

bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")


def _apply_geofence(p: Project, g: dict):
    enabled = bool(g.get("enabled", True))
    center = g.get("center") or {}
    lat, lon = geofence.validate_coordinates(
        center.get("lat", g.get("latitude")), center.get("lon", g.get("longitude"))
    )
    radius = as_float(g.get("radius_m"), "radius_m")
    buffer = as_float(g.get("buffer_m"), "buffer_m")
    if (radius is not None and radius < 0) or (buffer is not None and buffer < 0):
        raise ValidationFailed(message="radius_m and buffer_m must be >= 0")
    if enabled and lat is None:
        raise ValidationFailed(message="an enabled geofence needs a center")
    p.geo_enabled = enabled
    p.geo_center_lat, p.geo_center_lon = lat, lon
    p.geo_radius_m, p.geo_buffer_m = radius, buffer


@bp.post("")
@requires_perms("project.manage")
def create_project():
    """
    POST /api/v1/projects
    {"name", "location"?, "geofence"?: {"enabled", "center": {"lat","lon"}, "radius_m", "buffer_m"}}
    """
    actor = current_actor()
    ensure_role(actor, "owner", action="create projects")
    d = json_body()
    name = (d.get("name") or "").strip()
    if not name:
        raise ValidationFailed(message="name is required")
    p = Project(name=name, location=(d.get("location") or "").strip() or None, owner_id=actor.user_id)
    if d.get("geofence"):
        _apply_geofence(p, d["geofence"])
    db.session.add(p)
    db.session.commit()
    return ok(p.to_dict(), status=201)


@bp.get("")
@requires_perms("project.read")
def list_projects():
    actor = current_actor()
    q = Project.query.outerjoin(
        ProjectMember, db.and_(ProjectMember.project_id == Project.id, ProjectMember.user_id == actor.user_id)
    ).filter(db.or_(Project.owner_id == actor.user_id, ProjectMember.user_id.isnot(None)))
    items = q.order_by(Project.created_at.desc(), Project.id.desc()).all()
    return ok([p.to_dict() for p in items], total=len(items))


@bp.get("/<int:project_id>")
@requires_perms("project.read")
def get_project(project_id: int):
    actor = current_actor()
    p = get_or_404(Project, project_id, "Project")
    ensure_project_access(actor, p)
    data = p.to_dict()
    data["members"] = [
        {"user_id": m.user_id, "offsite_id": m.user.offsite_id, "full_name": m.user.full_name, "role": m.user.role}
        for m in p.members
    ]
    return ok(data)


@bp.put("/<int:project_id>/geofence")
@requires_perms("project.manage")
def set_geofence(project_id: int):
    actor = current_actor()
    p = get_or_404(Project, project_id, "Project")
    if p.owner_id != actor.user_id:
        raise Forbidden(message="Only the project owner can change the geofence")
    _apply_geofence(p, json_body())
    db.session.commit()
    return ok(p.to_dict())


@bp.post("/<int:project_id>/members")
@requires_perms("project.members.manage")
def add_member(project_id: int):
    """POST {"user_id"} or {"offsite_id"}; owners and the project's managers."""
    actor = current_actor()
    p = get_or_404(Project, project_id, "Project")
    if p.owner_id != actor.user_id and not (actor.role == "manager" and is_project_member(p.id, actor.user_id)):
        raise Forbidden(message="Only the owner or a project manager can add members")
    d = json_body()
    user = None
    if d.get("user_id") is not None:
        user = db.session.get(User, int(d["user_id"])) if str(d["user_id"]).isdigit() else None
    elif d.get("offsite_id"):
        user = User.query.filter(db.func.upper(User.offsite_id) == str(d["offsite_id"]).strip().upper()).first()
    if not user:
        raise ValidationFailed(message="user not found")
    if user.role == "owner":
        raise ValidationFailed(message="owners are not added as members")
    if not is_project_member(p.id, user.id):
        db.session.add(ProjectMember(project_id=p.id, user_id=user.id))
        db.session.commit()
    return ok({"project_id": p.id, "user_id": user.id, "offsite_id": user.offsite_id}, status=201)


@bp.delete("/<int:project_id>/members/<int:user_id>")
@requires_perms("project.manage")
def remove_member(project_id: int, user_id: int):
    actor = current_actor()
    p = get_or_404(Project, project_id, "Project")
    if p.owner_id != actor.user_id:
        raise Forbidden(message="Only the project owner can remove members")
    m = db.session.get(ProjectMember, (p.id, user_id))
    if m:
        db.session.delete(m)
        db.session.commit()
    return ok({"removed": bool(m)})
