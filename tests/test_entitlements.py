import pytest

from app.extensions import db, tenant_spaces
from app.models.plan import Plan, UNLIMITED
from app.models.tenant_space import Board
from app.services.entitlements import EntitlementGate
from app.services.tenant_spaces import TenantContext


@pytest.fixture
def gate(app):
    return EntitlementGate()


@pytest.fixture
def ctx(tenant):
    return TenantContext(tenant.slug)


def _add_boards(ctx, count):
    with tenant_spaces.session(ctx) as session:
        for i in range(count):
            session.add(Board(name=f'Board {i}', created_by=1))


def test_free_plan_board_limit(gate, ctx):
    # provisioning created the starter board
    assert gate.check_limit(ctx, 'max_boards') is True

    _add_boards(ctx, 2)
    decision = gate.evaluate(ctx, 'max_boards')
    assert decision.allowed is False
    assert decision.limit == 3
    assert decision.usage == 3

    with tenant_spaces.session(ctx) as session:
        session.delete(session.query(Board).first())

    assert gate.check_limit(ctx, 'max_boards') is True


def test_unlimited_plan_always_passes(gate, ctx, tenant):
    tenant.plan_id = Plan.query.filter_by(slug='pro-monthly').one().id
    db.session.commit()
    _add_boards(ctx, 10)

    decision = gate.evaluate(ctx, 'max_boards')
    assert decision.allowed is True
    assert decision.limit == UNLIMITED
    assert decision.usage is None


def test_tenant_without_plan_is_denied(gate, ctx, tenant):
    tenant.plan_id = None
    db.session.commit()

    decision = gate.evaluate(ctx, 'max_boards')
    assert decision.allowed is False
    assert decision.limit is None


def test_feature_missing_from_plan_is_denied(gate, ctx):
    assert gate.check_limit(ctx, 'max_widgets') is False


def test_boolean_flag_is_not_a_limit(gate, ctx):
    assert gate.check_limit(ctx, 'analytics') is False


def test_limit_without_usage_counter_is_denied(gate, ctx):
    decision = gate.evaluate(ctx, 'max_storage_mb')
    assert decision.allowed is False
    assert decision.limit == 100


def test_unknown_tenant_is_denied(gate, app):
    assert gate.check_limit(TenantContext('ghost'), 'max_boards') is False


def test_usage_report(gate, ctx):
    usage = gate.usage(ctx)

    assert usage['max_boards'] == {"current": 1, "limit": 3}
    assert usage['max_users'] == {"current": 1, "limit": 3}
    assert usage['max_teams'] == {"current": 0, "limit": 1}
    assert usage['max_tasks'] == {"current": 0, "limit": None}
    # the gate denies what the plan does not define
    assert gate.check_limit(ctx, 'max_tasks') is False
