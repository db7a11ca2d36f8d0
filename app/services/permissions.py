"""
Permission Bootstrapper

The role -> permission matrix every tenant gets. This module is the only
place the matrix is defined; provisioning and the administrative reseed both
call bootstrap_permissions().
"""
import logging
from typing import Dict, FrozenSet, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.tenant_space import Permission, Role

logger = logging.getLogger(__name__)

ROLE_OWNER = 'owner'
ROLE_ADMIN = 'admin'
ROLE_MEMBER = 'member'
ROLE_VIEWER = 'viewer'

PERMISSIONS: List[str] = [
    # Teams
    'view teams', 'create teams', 'edit teams', 'delete teams', 'manage teams',
    # Boards
    'view boards', 'create boards', 'edit boards', 'delete boards', 'manage boards',
    # Tasks
    'view tasks', 'create tasks', 'edit tasks', 'delete tasks', 'assign tasks',
    # Users
    'view users', 'invite users', 'edit users', 'delete users',
    # Analytics
    'view analytics',
    # Settings (billing, organization)
    'manage settings',
]

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    ROLE_OWNER: frozenset(PERMISSIONS),
    ROLE_ADMIN: frozenset([
        'view teams', 'create teams', 'edit teams', 'manage teams',
        'view boards', 'create boards', 'edit boards', 'manage boards',
        'view tasks', 'create tasks', 'edit tasks', 'delete tasks', 'assign tasks',
        'view users', 'invite users', 'edit users',
        'view analytics',
    ]),
    ROLE_MEMBER: frozenset([
        'view teams',
        'view boards', 'create boards',
        'view tasks', 'create tasks', 'edit tasks',
        'view users',
    ]),
    ROLE_VIEWER: frozenset([
        'view teams',
        'view boards',
        'view tasks',
        'view users',
    ]),
}


def permissions_for(role):
    return ROLE_PERMISSIONS.get(role, frozenset())


def role_has_permission(role, permission):
    return permission in permissions_for(role)


def bootstrap_permissions(session: Session) -> bool:
    """
    Seed the permission catalogue and the four roles into a tenant space.

    Idempotent: rows that already exist are left untouched and only missing
    permissions, roles or grants are added, so running it on an already
    bootstrapped space changes nothing.

    Args:
        session: Session bound to the tenant's space

    Returns:
        True if anything was created, False if the space was already complete
    """
    created = False

    existing = {p.name: p for p in session.scalars(select(Permission))}
    for name in PERMISSIONS:
        if name not in existing:
            permission = Permission(name=name)
            session.add(permission)
            existing[name] = permission
            created = True

    roles = {r.name: r for r in session.scalars(select(Role))}
    for role_name, granted in ROLE_PERMISSIONS.items():
        role = roles.get(role_name)
        if role is None:
            role = Role(name=role_name)
            session.add(role)
            created = True

        have = {p.name for p in role.permissions}
        for name in PERMISSIONS:
            if name in granted and name not in have:
                role.permissions.append(existing[name])
                created = True

    session.flush()
    if created:
        logger.info("Roles and permissions seeded")
    return created
