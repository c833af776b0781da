# offsite_api/services/guards.py
"""Authorization and status guards shared by every approval workflow."""
from __future__ import annotations

from typing import Iterable

from sqlalchemy import update

from offsite_api.common.errors import Conflict, Forbidden, NotFound
from offsite_api.extensions import db
from offsite_api.models.project import Project, ProjectMember
from offsite_api.models.user import User


def get_or_404(model, record_id, label: str | None = None):
    obj = db.session.get(model, record_id) if record_id is not None else None
    if obj is None:
        raise NotFound(message=f"{label or model.__name__} not found")
    return obj


def ensure_role(actor, *roles: str, action: str = "perform this action"):
    if actor.role not in roles:
        raise Forbidden(message=f"Role {actor.role!r} may not {action}")


def ensure_not_self(actor_id: int, submitter_id: int, action: str = "approve"):
    """The single self-action guard: nobody acts on their own submission."""
    if actor_id is not None and actor_id == submitter_id:
        raise Conflict("SELF_APPROVAL", f"You cannot {action} your own request")


def is_project_member(project_id: int, user_id: int) -> bool:
    return db.session.get(ProjectMember, (project_id, user_id)) is not None


def project_manager_ids(project_id: int) -> list[int]:
    rows = (
        db.session.query(User.id)
        .join(ProjectMember, ProjectMember.user_id == User.id)
        .filter(ProjectMember.project_id == project_id, User.role == "manager", User.status == "active")
        .order_by(User.id)
        .all()
    )
    return [r[0] for r in rows]


def ensure_project_manager(actor, project: Project, action: str = "approve"):
    ensure_role(actor, "manager", action=action)
    if not is_project_member(project.id, actor.user_id):
        raise Forbidden(message=f"Only managers of project {project.id} may {action}")


def ensure_project_owner(actor, project: Project, action: str = "approve"):
    if actor.role != "owner" or project.owner_id != actor.user_id:
        raise Forbidden(message=f"Only the owner of project {project.id} may {action}")


def ensure_project_access(actor, project: Project):
    if project.owner_id == actor.user_id or is_project_member(project.id, actor.user_id):
        return
    raise Forbidden(message="You are not assigned to this project")


def lock_row(model, record_id: int):
    """
    Hold the row's write lock until the transaction ends.

    A no-op UPDATE: postgres takes the row lock, sqlite (which ignores
    FOR UPDATE) takes its database write lock. Check-then-insert sections
    keyed on this row then run one at a time.
    """
    db.session.execute(
        update(model)
        .where(model.id == record_id)
        .values(id=model.id)
        .execution_options(synchronize_session=False)
    )


def conditional_transition(model, record_id: int, from_statuses: Iterable, values: dict,
                           conflict_code: str = "INVALID_STATUS", **extra_where):
    """
    UPDATE model SET values WHERE id = record_id AND status IN from_statuses.

    One statement, so two racing callers cannot both win. Zero rows updated
    means someone else already moved the record; that is a Conflict.
    """
    stmt = (
        update(model)
        .where(model.id == record_id, model.status.in_(list(from_statuses)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    for col, expected in extra_where.items():
        stmt = stmt.where(getattr(model, col) == expected)
    res = db.session.execute(stmt)
    if res.rowcount != 1:
        raise Conflict(conflict_code, f"{model.__name__} {record_id} is no longer in an actionable state")
    return db.session.get(model, record_id, populate_existing=True)
