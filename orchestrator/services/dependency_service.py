"""Rule dependency graph - edge mutations with cycle rejection.

Edges are stored as flat rows (rule -> depends_on) and traversed on demand.
Mutations for one organization are serialized with an org-level lock so the
reachability check and the insert see the same edge set.
"""

from __future__ import annotations

import heapq
import logging
from collections import defaultdict, deque
from typing import Iterable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.enums import DependencyType
from orchestrator.db.models import AutomationRule, RuleDependency
from orchestrator.services import org_service

logger = logging.getLogger(__name__)


class DependencyServiceError(Exception):
    """Base exception for dependency service errors."""

    pass


class CircularDependencyError(DependencyServiceError):
    """The new edge would close a cycle in the organization's rule graph."""

    pass


class DuplicateDependencyError(DependencyServiceError):
    """An edge between these rules already exists."""

    pass


class RuleNotFoundError(DependencyServiceError):
    """Rule does not exist in the organization."""

    pass


def _get_rule(db: Session, org_id: UUID, rule_id: UUID) -> AutomationRule | None:
    return (
        db.query(AutomationRule)
        .filter(AutomationRule.id == rule_id, AutomationRule.organization_id == org_id)
        .first()
    )


def list_dependencies(
    db: Session, org_id: UUID, rule_id: UUID | None = None
) -> list[RuleDependency]:
    """List edges for an organization, optionally those touching one rule."""
    query = db.query(RuleDependency).filter(RuleDependency.organization_id == org_id)
    if rule_id:
        query = query.filter(
            (RuleDependency.rule_id == rule_id) | (RuleDependency.depends_on_rule_id == rule_id)
        )
    return query.order_by(RuleDependency.created_at).all()


def dependencies_of(
    db: Session,
    org_id: UUID,
    rule_id: UUID,
    dependency_type: DependencyType | None = None,
) -> list[RuleDependency]:
    """Outgoing edges of a rule (rule_id -> depends_on)."""
    query = db.query(RuleDependency).filter(
        RuleDependency.organization_id == org_id,
        RuleDependency.rule_id == rule_id,
    )
    if dependency_type:
        query = query.filter(RuleDependency.dependency_type == dependency_type.value)
    return query.all()


def dependents_of(
    db: Session,
    org_id: UUID,
    rule_id: UUID,
    dependency_type: DependencyType | None = None,
) -> list[RuleDependency]:
    """Incoming edges of a rule (other -> rule_id)."""
    query = db.query(RuleDependency).filter(
        RuleDependency.organization_id == org_id,
        RuleDependency.depends_on_rule_id == rule_id,
    )
    if dependency_type:
        query = query.filter(RuleDependency.dependency_type == dependency_type.value)
    return query.all()


def _adjacency(db: Session, org_id: UUID) -> dict[UUID, list[UUID]]:
    edges = (
        db.query(RuleDependency.rule_id, RuleDependency.depends_on_rule_id)
        .filter(RuleDependency.organization_id == org_id)
        .all()
    )
    graph: dict[UUID, list[UUID]] = defaultdict(list)
    for source, target in edges:
        graph[source].append(target)
    return graph


def would_create_cycle(
    db: Session, org_id: UUID, rule_id: UUID, depends_on_rule_id: UUID
) -> bool:
    """True if adding rule -> depends_on would close a cycle (self edges included)."""
    if rule_id == depends_on_rule_id:
        return True
    graph = _adjacency(db, org_id)
    queue = deque([depends_on_rule_id])
    visited = {depends_on_rule_id}
    while queue:
        node = queue.popleft()
        for neighbor in graph.get(node, ()):
            if neighbor == rule_id:
                return True
            if neighbor not in visited:
                visited.add(neighbor)
                queue.append(neighbor)
    return False


def add_dependency(
    db: Session,
    org_id: UUID,
    rule_id: UUID,
    depends_on_rule_id: UUID,
    dependency_type: DependencyType,
    delay_minutes: int = 0,
) -> RuleDependency:
    """
    Add an edge rule -> depends_on after checking it keeps the graph acyclic.

    Check and insert run under the organization lock and commit together; on
    any rejection the transaction is rolled back and nothing is persisted.

    Raises:
        RuleNotFoundError: either rule is missing or belongs to another org
        CircularDependencyError: the edge would close a cycle
        DuplicateDependencyError: the edge already exists
    """
    dependency_type = DependencyType(dependency_type)
    if delay_minutes < 0:
        raise ValueError("delay_minutes must be >= 0")

    try:
        org_service.lock_org(db, org_id)

        if not _get_rule(db, org_id, rule_id) or not _get_rule(db, org_id, depends_on_rule_id):
            raise RuleNotFoundError("Rule not found")

        if would_create_cycle(db, org_id, rule_id, depends_on_rule_id):
            raise CircularDependencyError(
                "Adding this dependency would create a circular dependency"
            )

        existing = (
            db.query(RuleDependency.id)
            .filter(
                RuleDependency.rule_id == rule_id,
                RuleDependency.depends_on_rule_id == depends_on_rule_id,
            )
            .first()
        )
        if existing:
            raise DuplicateDependencyError("Dependency already exists")

        dependency = RuleDependency(
            organization_id=org_id,
            rule_id=rule_id,
            depends_on_rule_id=depends_on_rule_id,
            dependency_type=dependency_type.value,
            delay_minutes=delay_minutes,
        )
        db.add(dependency)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateDependencyError("Dependency already exists") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(dependency)
    logger.info(
        "Added %s dependency %s -> %s",
        dependency_type.value,
        rule_id,
        depends_on_rule_id,
        extra=build_log_context(org_id=org_id, rule_id=rule_id),
    )
    return dependency


def remove_dependency(db: Session, org_id: UUID, dependency_id: UUID) -> bool:
    """Delete an edge unconditionally. Returns False if it did not exist."""
    try:
        org_service.lock_org(db, org_id)
        deleted = (
            db.query(RuleDependency)
            .filter(
                RuleDependency.id == dependency_id,
                RuleDependency.organization_id == org_id,
            )
            .delete(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return bool(deleted)


def is_referenced(db: Session, org_id: UUID, rule_id: UUID) -> bool:
    """True if any edge touches the rule."""
    return (
        db.query(RuleDependency.id)
        .filter(
            RuleDependency.organization_id == org_id,
            (RuleDependency.rule_id == rule_id) | (RuleDependency.depends_on_rule_id == rule_id),
        )
        .first()
        is not None
    )


def rule_fire_order(
    db: Session, org_id: UUID, rules: Iterable[AutomationRule]
) -> list[AutomationRule]:
    """
    Order rules that fire for the same event; ties go to higher priority.

    A required rule fires after the rule it waits on. A blocking or triggering
    rule fires before the rule it blocks or triggers. Only edges between the
    given rules count.
    """
    rules = list(rules)
    by_id = {rule.id: rule for rule in rules}
    indegree = {rule.id: 0 for rule in rules}
    successors: dict[UUID, list[UUID]] = defaultdict(list)

    edges = (
        db.query(RuleDependency)
        .filter(
            RuleDependency.organization_id == org_id,
            RuleDependency.rule_id.in_(by_id.keys()),
            RuleDependency.depends_on_rule_id.in_(by_id.keys()),
        )
        .all()
        if by_id
        else []
    )
    for edge in edges:
        if edge.dependency_type == DependencyType.REQUIRED.value:
            before, after = edge.depends_on_rule_id, edge.rule_id
        else:
            before, after = edge.rule_id, edge.depends_on_rule_id
        successors[before].append(after)
        indegree[after] += 1

    def _key(rule: AutomationRule):
        return (-rule.priority, str(rule.id))

    ready = [(_key(by_id[rid]), rid) for rid, deg in indegree.items() if deg == 0]
    heapq.heapify(ready)
    ordered: list[AutomationRule] = []
    while ready:
        _, rid = heapq.heappop(ready)
        ordered.append(by_id[rid])
        for successor in successors.get(rid, ()):
            indegree[successor] -= 1
            if indegree[successor] == 0:
                heapq.heappush(ready, (_key(by_id[successor]), successor))

    # Mixed edge directions can conflict; remaining rules go last by priority
    leftovers = [by_id[rid] for rid, deg in indegree.items() if deg > 0]
    ordered.extend(sorted(leftovers, key=_key))
    return ordered
