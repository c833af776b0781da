# offsite_api/seed_rbac.py
from offsite_api.extensions import db
from offsite_api.models.security import Role, Permission, RolePermission, UserRole
from offsite_api.models.user import User

DEFAULT_ROLES = [
    ("admin", "Administrator"),
    ("owner", "Owner"),
    ("manager", "Project Manager"),
    ("engineer", "Site Engineer"),
    ("purchase_manager", "Purchase Manager"),
    ("contractor", "Contractor"),
]

DEFAULT_PERMS = [
    # Projects
    "project.read", "project.manage", "project.members.manage",

    # Permit-to-work
    "permit.read", "permit.create", "permit.approve", "permit.verify",

    # Petty cash
    "petty_cash.read", "petty_cash.submit", "petty_cash.approve",

    # Materials
    "material.read", "material.request", "material.approve",

    # Contractors
    "contractor.contract.manage",
    "contractor.labour.manage",
    "contractor.attendance.upload",
    "contractor.invoice.read", "contractor.invoice.create", "contractor.invoice.approve",

    # Notifications
    "notification.read",
]

ROLE_PERM_MAP = {
    "admin": DEFAULT_PERMS,
    "owner": [
        "project.read", "project.manage", "project.members.manage",
        "permit.read",
        "petty_cash.read", "petty_cash.approve",
        "material.read",
        "contractor.contract.manage", "contractor.invoice.read",
        "notification.read",
    ],
    "manager": [
        "project.read", "project.members.manage",
        "permit.read", "permit.approve",
        "petty_cash.read", "petty_cash.submit", "petty_cash.approve",
        "material.read", "material.request", "material.approve",
        "contractor.contract.manage", "contractor.invoice.read", "contractor.invoice.approve",
        "notification.read",
    ],
    "engineer": [
        "project.read",
        "permit.read", "permit.create", "permit.verify",
        "petty_cash.read", "petty_cash.submit",
        "material.read", "material.request",
        "notification.read",
    ],
    "purchase_manager": [
        "project.read",
        "material.read", "material.approve",
        "notification.read",
    ],
    "contractor": [
        "project.read",
        "contractor.labour.manage", "contractor.attendance.upload",
        "contractor.invoice.read", "contractor.invoice.create",
        "notification.read",
    ],
}

def _ensure_roles():
    code_to_role = {}
    for code, _name in DEFAULT_ROLES:
        r = Role.query.filter_by(code=code).first()
        if not r:
            r = Role(code=code)
            db.session.add(r)
            db.session.flush()
        code_to_role[code] = r
    return code_to_role

def _ensure_permissions():
    code_to_perm = {}
    for code in DEFAULT_PERMS:
        p = Permission.query.filter_by(code=code).first()
        if not p:
            p = Permission(code=code, name=code.replace(".", " ").replace("_", " ").title())
            db.session.add(p)
            db.session.flush()
        code_to_perm[code] = p
    return code_to_perm

def _map_role_perms(code_to_role, code_to_perm):
    for rcode, perms in ROLE_PERM_MAP.items():
        r = code_to_role[rcode]
        existing = {(rp.role_id, rp.permission_id) for rp in r.permissions}
        for pcode in perms:
            p = code_to_perm[pcode]
            if (r.id, p.id) not in existing:
                db.session.add(RolePermission(role_id=r.id, permission_id=p.id))

def _attach_domain_roles(code_to_role):
    # every user carries the RBAC role matching their domain role
    for user in User.query.all():
        role = code_to_role.get(user.role)
        if role and not any(ur.role_id == role.id for ur in user.user_roles):
            db.session.add(UserRole(user_id=user.id, role_id=role.id))

def grant_role(user: User, code: str):
    role = Role.query.filter_by(code=code).first()
    if role and not any(ur.role_id == role.id for ur in user.user_roles):
        db.session.add(UserRole(user_id=user.id, role_id=role.id))

def run():
    code_to_role = _ensure_roles()
    code_to_perm = _ensure_permissions()
    _map_role_perms(code_to_role, code_to_perm)
    _attach_domain_roles(code_to_role)
    db.session.commit()
    return {"ok": True, "roles": len(DEFAULT_ROLES), "perms": len(DEFAULT_PERMS)}
