"""
Tests for the rule dependency graph.

The per-organization edge set must stay acyclic; rejected edges leave no trace.
"""

import uuid

import pytest

from orchestrator.db.enums import DependencyType
from orchestrator.db.models import RuleDependency
from orchestrator.services import dependency_service, rule_service
from orchestrator.services.dependency_service import (
    CircularDependencyError,
    DuplicateDependencyError,
    RuleNotFoundError,
)


def _edge_count(db, org_id) -> int:
    return db.query(RuleDependency).filter(RuleDependency.organization_id == org_id).count()


# =============================================================================
# Edge mutations
# =============================================================================

def test_add_dependency(db, test_org, make_rule):
    a, b = make_rule(name="A"), make_rule(name="B")

    edge = dependency_service.add_dependency(
        db, test_org.id, b.id, a.id, DependencyType.REQUIRED, delay_minutes=30
    )

    assert edge.id is not None
    assert edge.dependency_type == "required"
    assert edge.delay_minutes == 30
    assert [e.id for e in dependency_service.dependencies_of(db, test_org.id, b.id)] == [edge.id]
    assert [e.id for e in dependency_service.dependents_of(db, test_org.id, a.id)] == [edge.id]


def test_self_dependency_rejected(db, test_org, make_rule):
    a = make_rule()
    with pytest.raises(CircularDependencyError):
        dependency_service.add_dependency(db, test_org.id, a.id, a.id, DependencyType.REQUIRED)
    assert _edge_count(db, test_org.id) == 0


def test_cycle_rejected_and_nothing_persisted(db, test_org, make_rule):
    a, b, c = make_rule(name="A"), make_rule(name="B"), make_rule(name="C")
    dependency_service.add_dependency(db, test_org.id, a.id, b.id, DependencyType.REQUIRED)
    dependency_service.add_dependency(db, test_org.id, b.id, c.id, DependencyType.BLOCKS)

    with pytest.raises(CircularDependencyError):
        dependency_service.add_dependency(db, test_org.id, c.id, a.id, DependencyType.TRIGGERS)

    assert _edge_count(db, test_org.id) == 2
    assert dependency_service.would_create_cycle(db, test_org.id, c.id, a.id)
    assert not dependency_service.would_create_cycle(db, test_org.id, a.id, c.id)


def test_cycle_check_ignores_edge_type(db, test_org, make_rule):
    a, b = make_rule(), make_rule()
    dependency_service.add_dependency(db, test_org.id, a.id, b.id, DependencyType.BLOCKS)
    with pytest.raises(CircularDependencyError):
        dependency_service.add_dependency(db, test_org.id, b.id, a.id, DependencyType.REQUIRED)


def test_duplicate_dependency_rejected(db, test_org, make_rule):
    a, b = make_rule(), make_rule()
    dependency_service.add_dependency(db, test_org.id, a.id, b.id, DependencyType.REQUIRED)
    with pytest.raises(DuplicateDependencyError):
        dependency_service.add_dependency(db, test_org.id, a.id, b.id, DependencyType.BLOCKS)
    assert _edge_count(db, test_org.id) == 1


def test_unknown_rule_rejected(db, test_org, make_rule):
    a = make_rule()
    with pytest.raises(RuleNotFoundError):
        dependency_service.add_dependency(
            db, test_org.id, a.id, uuid.uuid4(), DependencyType.REQUIRED
        )


def test_negative_delay_rejected(db, test_org, make_rule):
    a, b = make_rule(), make_rule()
    with pytest.raises(ValueError):
        dependency_service.add_dependency(
            db, test_org.id, a.id, b.id, DependencyType.REQUIRED, delay_minutes=-1
        )


def test_remove_dependency(db, test_org, make_rule):
    a, b = make_rule(), make_rule()
    edge = dependency_service.add_dependency(db, test_org.id, a.id, b.id, DependencyType.REQUIRED)

    assert dependency_service.remove_dependency(db, test_org.id, edge.id) is True
    assert dependency_service.remove_dependency(db, test_org.id, edge.id) is False
    # Removing the edge makes the reverse direction legal
    dependency_service.add_dependency(db, test_org.id, b.id, a.id, DependencyType.REQUIRED)


def test_referenced_rule_is_soft_disabled(db, test_org, make_rule):
    a, b, c = make_rule(), make_rule(), make_rule()
    dependency_service.add_dependency(db, test_org.id, a.id, b.id, DependencyType.REQUIRED)

    assert rule_service.delete_rule(db, test_org.id, b.id) == "disabled"
    db.commit()
    db.refresh(b)
    assert b.is_active is False

    assert rule_service.delete_rule(db, test_org.id, c.id) == "deleted"
    db.commit()
    assert rule_service.get_rule(db, test_org.id, c.id) is None


# =============================================================================
# Fire order
# =============================================================================

def test_fire_order_respects_edges(db, test_org, make_rule):
    base = make_rule(name="base", priority=0)
    follower = make_rule(name="follower", priority=10)
    blocker = make_rule(name="blocker", priority=0)
    blocked = make_rule(name="blocked", priority=5)
    dependency_service.add_dependency(
        db, test_org.id, follower.id, base.id, DependencyType.REQUIRED
    )
    dependency_service.add_dependency(
        db, test_org.id, blocker.id, blocked.id, DependencyType.BLOCKS
    )

    ordered = dependency_service.rule_fire_order(
        db, test_org.id, [follower, blocked, base, blocker]
    )
    names = [rule.name for rule in ordered]

    assert names.index("base") < names.index("follower")
    assert names.index("blocker") < names.index("blocked")


def test_fire_order_without_edges_uses_priority(db, test_org, make_rule):
    low = make_rule(name="low", priority=1)
    high = make_rule(name="high", priority=9)
    ordered = dependency_service.rule_fire_order(db, test_org.id, [low, high])
    assert [rule.name for rule in ordered] == ["high", "low"]


# =============================================================================
# Router
# =============================================================================

@pytest.mark.asyncio
async def test_add_dependency_endpoint(client, make_rule):
    a, b = make_rule(), make_rule()
    response = await client.post(
        f"/rules/{b.id}/dependencies",
        json={"depends_on_rule_id": str(a.id), "dependency_type": "required", "delay_minutes": 15},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["rule_id"] == str(b.id)
    assert data["depends_on_rule_id"] == str(a.id)

    listed = await client.get(f"/rules/{a.id}/dependencies")
    assert listed.status_code == 200
    assert [d["id"] for d in listed.json()] == [data["id"]]


@pytest.mark.asyncio
async def test_cycle_endpoint_returns_409(client, make_rule):
    a, b = make_rule(), make_rule()
    first = await client.post(
        f"/rules/{a.id}/dependencies",
        json={"depends_on_rule_id": str(b.id), "dependency_type": "required"},
    )
    assert first.status_code == 201

    response = await client.post(
        f"/rules/{b.id}/dependencies",
        json={"depends_on_rule_id": str(a.id), "dependency_type": "blocks"},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_dependency_unknown_rule_returns_404(client, make_rule):
    a = make_rule()
    response = await client.post(
        f"/rules/{a.id}/dependencies",
        json={"depends_on_rule_id": str(uuid.uuid4()), "dependency_type": "required"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_dependency_endpoint(client, db, test_org, make_rule):
    a, b = make_rule(), make_rule()
    edge = dependency_service.add_dependency(db, test_org.id, a.id, b.id, DependencyType.TRIGGERS)

    response = await client.delete(f"/dependencies/{edge.id}")
    assert response.status_code == 204

    missing = await client.delete(f"/dependencies/{edge.id}")
    assert missing.status_code == 404
