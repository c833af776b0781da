# offsite_api/models/security.py
from offsite_api.extensions import db


def _owned(target, back):
    # link rows disappear with either side of the grant
    return db.relationship(target, back_populates=back, cascade="all, delete-orphan", passive_deletes=True)


def _fk(ref):
    return db.Column(db.Integer, db.ForeignKey(ref, ondelete="CASCADE"), primary_key=True)


class Role(db.Model):
    """A site role such as manager, site_engineer or contractor."""
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)

    users = _owned("UserRole", "role")
    permissions = _owned("RolePermission", "role")

    def __repr__(self) -> str:
        return f"<Role {self.code}>"


class Permission(db.Model):
    """Dotted capability code, e.g. ``petty_cash.approve``; ``permit.*`` grants the family."""
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(150))

    roles = _owned("RolePermission", "permission")

    def __repr__(self) -> str:
        return f"<Permission {self.code}>"


class UserRole(db.Model):
    __tablename__ = "user_roles"

    user_id = _fk("users.id")
    role_id = _fk("roles.id")

    role = db.relationship("Role", back_populates="users")
    user = db.relationship(
        "User",
        backref=db.backref("user_roles", cascade="all, delete-orphan", passive_deletes=True),
    )


class RolePermission(db.Model):
    __tablename__ = "role_permissions"

    role_id = _fk("roles.id")
    permission_id = _fk("permissions.id")

    role = db.relationship("Role", back_populates="permissions")
    permission = db.relationship("Permission", back_populates="roles")


def user_role_codes(user_id: int) -> set[str]:
    rows = (
        db.session.query(Role.code)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
    )
    return {code for (code,) in rows}


def user_permission_codes(user_id: int) -> set[str]:
    """Every permission code reachable through the user's granted roles."""
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
    )
    return {code for (code,) in rows}
