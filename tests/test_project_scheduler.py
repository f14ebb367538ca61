import gc
from datetime import date
from decimal import Decimal

import pytest

from database import operations
from planning.errors import CycleError, InvalidReferenceError, NotFoundError, OverAllocationError
from planning.models import AllocationStatus
from utils import project_scheduler


@pytest.fixture
def project(db):
    project_id = operations.create_new_project("Офис", start_date=date(2025, 1, 1))
    a = operations.add_project_task(project_id, "Фундамент", date(2025, 1, 1), date(2025, 1, 5))
    b = operations.add_project_task(project_id, "Стены", date(2025, 1, 6), date(2025, 1, 10))
    return {'id': project_id, 'A': a, 'B': b}


def stored_task(project_id, task_id):
    snapshot = operations.get_project_snapshot(project_id)
    return next(t for t in snapshot['tasks'] if t.id == task_id)


def test_add_dependency_is_stored_and_audited(project):
    change = project_scheduler.add_dependency(project['id'], project['A'], project['B'], actor='alice')

    snapshot = operations.get_project_snapshot(project['id'])
    (stored,) = snapshot['dependencies']
    assert stored.id == change.dependency.id
    assert (stored.predecessor_task_id, stored.successor_task_id) == (project['A'], project['B'])

    (entry,) = operations.get_audit_log(project['id'])
    assert entry['action'] == 'dependency_added'
    assert entry['actor'] == 'alice'
    assert entry['payload']['dependency_id'] == stored.id


def test_cycle_is_not_stored(project):
    project_scheduler.add_dependency(project['id'], project['A'], project['B'])

    with pytest.raises(CycleError):
        project_scheduler.add_dependency(project['id'], project['B'], project['A'])

    assert len(operations.get_project_snapshot(project['id'])['dependencies']) == 1
    assert len(operations.get_audit_log(project['id'])) == 1


def test_critical_path_of_stored_project(project):
    project_scheduler.add_dependency(project['id'], project['A'], project['B'])

    result = project_scheduler.get_project_critical_path(project['id'])

    assert result.project_duration == 10
    assert result.critical_path == [project['A'], project['B']]


def test_reschedule_in_auto_mode_rewrites_successors(project):
    project_scheduler.add_dependency(project['id'], project['A'], project['B'])

    update = project_scheduler.reschedule_task(project['id'], project['A'], end_date=date(2025, 1, 8), mode='auto')

    assert [c.task_id for c in update.propagation] == [project['B']]
    b = stored_task(project['id'], project['B'])
    assert (b.start_date, b.end_date) == (date(2025, 1, 9), date(2025, 1, 13))
    assert stored_task(project['id'], project['A']).end_date == date(2025, 1, 8)


def test_reschedule_in_manual_mode_keeps_successors(project):
    project_scheduler.add_dependency(project['id'], project['A'], project['B'])

    update = project_scheduler.reschedule_task(project['id'], project['A'], end_date=date(2025, 1, 8), mode='manual')

    assert update.stale_task_ids == [project['B']]
    b = stored_task(project['id'], project['B'])
    assert (b.start_date, b.end_date) == (date(2025, 1, 6), date(2025, 1, 10))


def test_remove_dependency(project):
    change = project_scheduler.add_dependency(project['id'], project['A'], project['B'], lag_days=2)
    assert stored_task(project['id'], project['B']).start_date == date(2025, 1, 6)

    project_scheduler.remove_dependency(project['id'], change.dependency.id, actor='bob')

    assert operations.get_project_snapshot(project['id'])['dependencies'] == []
    actions = [e['action'] for e in operations.get_audit_log(project['id'])]
    assert actions == ['dependency_added', 'dependency_removed']


def test_unknown_project(db):
    with pytest.raises(NotFoundError):
        project_scheduler.get_project_critical_path(404)


def test_allocation_flow(project):
    resource_id = operations.add_resource("Иванов", 'worker', daily_rate=Decimal('200.00'))

    change = project_scheduler.allocate(
        project['id'], project['A'], resource_id, 60, date(2025, 1, 1), date(2025, 1, 10), actor='pm'
    )
    assert change.allocation.id is not None
    assert change.allocation.estimated_cost == Decimal('1200.00')

    with pytest.raises(OverAllocationError) as exc:
        project_scheduler.allocate(project['id'], project['B'], resource_id, 50, date(2025, 1, 5), date(2025, 1, 15))
    assert [a.id for a in exc.value.conflicting_allocations] == [change.allocation.id]

    project_scheduler.set_allocation_status(change.allocation.id, AllocationStatus.CANCELLED, actor='pm')
    second = project_scheduler.allocate(
        project['id'], project['B'], resource_id, 50, date(2025, 1, 5), date(2025, 1, 15)
    )

    statuses = {a.id: a.status for a in operations.get_resource_allocations(resource_id)}
    assert statuses == {change.allocation.id: AllocationStatus.CANCELLED, second.allocation.id: AllocationStatus.PLANNED}

    actions = [e['action'] for e in operations.get_audit_log(project['id'])]
    assert actions == ['resource_allocated', 'allocation_status_changed', 'resource_allocated']


def test_unknown_resource(project):
    with pytest.raises(InvalidReferenceError):
        project_scheduler.allocate(project['id'], project['A'], 999, 50, date(2025, 1, 1), date(2025, 1, 2))


def test_locks_are_shared_per_key():
    assert project_scheduler.project_lock(1) is project_scheduler.project_lock(1)
    assert project_scheduler.project_lock(1) is not project_scheduler.project_lock(2)
    assert project_scheduler.resource_lock(1) is not project_scheduler.project_lock(1)


def test_unused_locks_are_dropped():
    lock = project_scheduler.project_lock('temporary')
    assert project_scheduler.project_lock('temporary') is lock

    del lock
    gc.collect()

    assert 'temporary' not in project_scheduler._project_locks


def failing_audit(fact, session=None):
    raise RuntimeError("audit log unavailable")


def test_failed_audit_leaves_reschedule_unapplied(project, monkeypatch):
    project_scheduler.add_dependency(project['id'], project['A'], project['B'])
    monkeypatch.setattr(operations, 'record_audit_fact', failing_audit)

    with pytest.raises(RuntimeError):
        project_scheduler.reschedule_task(project['id'], project['A'], end_date=date(2025, 1, 8), mode='auto')

    a = stored_task(project['id'], project['A'])
    b = stored_task(project['id'], project['B'])
    assert a.end_date == date(2025, 1, 5)
    assert (b.start_date, b.end_date) == (date(2025, 1, 6), date(2025, 1, 10))


def test_failed_audit_keeps_dependency(project, monkeypatch):
    change = project_scheduler.add_dependency(project['id'], project['A'], project['B'])
    monkeypatch.setattr(operations, 'record_audit_fact', failing_audit)

    with pytest.raises(RuntimeError):
        project_scheduler.remove_dependency(project['id'], change.dependency.id)

    (stored,) = operations.get_project_snapshot(project['id'])['dependencies']
    assert stored.id == change.dependency.id


def test_failed_audit_leaves_no_allocation(project, monkeypatch):
    resource_id = operations.add_resource("Петров", 'worker')
    monkeypatch.setattr(operations, 'record_audit_fact', failing_audit)

    with pytest.raises(RuntimeError):
        project_scheduler.allocate(project['id'], project['A'], resource_id, 50, date(2025, 1, 1), date(2025, 1, 5))

    assert operations.get_resource_allocations(resource_id) == []
