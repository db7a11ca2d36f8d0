import pytest
from sqlalchemy import func, select

from app.extensions import tenant_spaces
from app.models.tenant_space import Permission, Role
from app.services.permissions import (
    PERMISSIONS,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_OWNER,
    ROLE_VIEWER,
    bootstrap_permissions,
    permissions_for,
    role_has_permission,
)
from app.services.tenant_spaces import TenantContext


@pytest.fixture
def space(app):
    tenant_spaces.allocate('perm-test')
    return TenantContext('perm-test')


def _counts(ctx):
    with tenant_spaces.session(ctx) as session:
        permissions = session.scalar(select(func.count()).select_from(Permission))
        roles = session.scalar(select(func.count()).select_from(Role))
        grants = sum(len(r.permissions) for r in session.scalars(select(Role)))
    return permissions, roles, grants


def test_bootstrap_seeds_catalogue_and_roles(space):
    with tenant_spaces.session(space) as session:
        assert bootstrap_permissions(session) is True

    with tenant_spaces.session(space) as session:
        roles = {r.name: {p.name for p in r.permissions} for r in session.scalars(select(Role))}

    assert set(roles) == {ROLE_OWNER, ROLE_ADMIN, ROLE_MEMBER, ROLE_VIEWER}
    assert roles[ROLE_OWNER] == set(PERMISSIONS)
    assert roles[ROLE_VIEWER] == {'view teams', 'view boards', 'view tasks', 'view users'}
    assert 'delete boards' not in roles[ROLE_ADMIN]
    assert 'manage settings' not in roles[ROLE_ADMIN]


def test_bootstrap_twice_is_a_noop(space):
    with tenant_spaces.session(space) as session:
        bootstrap_permissions(session)
    before = _counts(space)

    with tenant_spaces.session(space) as session:
        assert bootstrap_permissions(session) is False

    assert _counts(space) == before
    assert before[0] == len(PERMISSIONS)
    assert before[1] == 4


def test_bootstrap_restores_missing_grant(space):
    with tenant_spaces.session(space) as session:
        bootstrap_permissions(session)

    with tenant_spaces.session(space) as session:
        member = session.scalars(select(Role).filter_by(name=ROLE_MEMBER)).one()
        member.permissions = [p for p in member.permissions if p.name != 'create boards']

    with tenant_spaces.session(space) as session:
        assert bootstrap_permissions(session) is True

    with tenant_spaces.session(space) as session:
        member = session.scalars(select(Role).filter_by(name=ROLE_MEMBER)).one()
        assert 'create boards' in {p.name for p in member.permissions}


def test_role_has_permission():
    assert role_has_permission(ROLE_OWNER, 'manage settings')
    assert role_has_permission(ROLE_MEMBER, 'create boards')
    assert not role_has_permission(ROLE_MEMBER, 'delete boards')
    assert not role_has_permission(ROLE_VIEWER, 'create tasks')
    assert not role_has_permission('stranger', 'view boards')
    assert permissions_for(None) == frozenset()
