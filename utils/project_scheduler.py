"""
Связывает модуль планирования с базой данных.

Каждый вызов читает снимок проекта, выполняет на нем чистые функции
планирования и сохраняет результат вместе с фактом аудита в одной
транзакции: при ошибке любой записи не сохраняется ничего. Вызовы,
затрагивающие один проект (зависимости, сроки задач) или один ресурс
(распределения), выполняются последовательно под блокировками процесса.

Блокировки хранятся в WeakValueDictionary: запись о проекте или ресурсе
исчезает, когда его блокировку никто не удерживает.
"""
import dataclasses
import threading
import weakref

from config import SCHEDULING_MODE, ALLOCATION_CEILING, OVERALLOCATION_CHECK
from database import operations
from logger import logger
from planning.dependencies import add_task_dependency, remove_task_dependency
from planning.errors import InvalidReferenceError, NotFoundError
from planning.models import AllocationStatus, SchedulingMode
from planning.network import calculate_critical_path
from planning.resources import advance_allocation_status, allocate_resource
from planning.schedule import apply_schedule_changes, update_task_schedule

_registry_lock = threading.Lock()
_project_locks = weakref.WeakValueDictionary()
_resource_locks = weakref.WeakValueDictionary()


def _get_lock(registry, key):
    with _registry_lock:
        lock = registry.get(key)
        if lock is None:
            lock = threading.Lock()
            registry[key] = lock
        return lock


def project_lock(project_id):
    return _get_lock(_project_locks, project_id)


def resource_lock(resource_id):
    return _get_lock(_resource_locks, resource_id)


def _load_project(project_id):
    snapshot = operations.get_project_snapshot(project_id)
    if snapshot is None:
        logger.error(f"Проект не найден: {project_id}")
        raise NotFoundError(f"Project {project_id} not found")
    return snapshot


def _with_id(fact, key, value):
    return dataclasses.replace(fact, payload={**fact.payload, key: value})


def get_project_critical_path(project_id):
    """Рассчитывает критический путь сохраненного проекта."""
    snapshot = _load_project(project_id)
    return calculate_critical_path(snapshot['tasks'], snapshot['dependencies'])


def add_dependency(project_id, predecessor_id, successor_id, dependency_type='finish_to_start',
                   lag_days=0, actor=None):
    """
    Добавляет зависимость в сохраненный проект.

    Returns:
        DependencyChange, у зависимости - ID из БД
    """
    with project_lock(project_id):
        snapshot = _load_project(project_id)
        change = add_task_dependency(
            snapshot['tasks'], snapshot['dependencies'], predecessor_id, successor_id,
            dependency_type=dependency_type, lag_days=lag_days, actor=actor, project_id=project_id,
        )

        with operations.session_scope() as session:
            dependency_id = operations.save_task_dependency(project_id, change.dependency, session=session)
            audit = _with_id(change.audit, 'dependency_id', dependency_id)
            operations.record_audit_fact(audit, session=session)

        stored = dataclasses.replace(change.dependency, id=dependency_id)
        change.dependencies = [stored if d is change.dependency else d for d in change.dependencies]
        change.dependency = stored
        change.audit = audit
        return change


def remove_dependency(project_id, dependency_id, actor=None, mode=SCHEDULING_MODE):
    """
    Удаляет зависимость из сохраненного проекта.

    В автоматическом режиме задачи, чьи ранние сроки сдвинулись,
    получают новые даты.
    """
    with project_lock(project_id):
        snapshot = _load_project(project_id)
        change = remove_task_dependency(
            snapshot['tasks'], snapshot['dependencies'], dependency_id,
            actor=actor, project_id=project_id,
        )

        with operations.session_scope() as session:
            operations.delete_task_dependency(dependency_id, session=session)
            if SchedulingMode(mode) == SchedulingMode.AUTO:
                _rewrite_task_dates(snapshot['tasks'], change.result, change.propagation, session)
            operations.record_audit_fact(change.audit, session=session)
        return change


def reschedule_task(project_id, task_id, start_date=None, end_date=None, duration=None,
                    actor=None, mode=SCHEDULING_MODE):
    """
    Изменяет сроки задачи и распространяет изменение по проекту.

    Returns:
        ScheduleUpdate
    """
    with project_lock(project_id):
        snapshot = _load_project(project_id)
        update = update_task_schedule(
            snapshot['tasks'], snapshot['dependencies'], task_id,
            start_date=start_date, end_date=end_date, duration=duration,
            mode=mode, actor=actor, project_id=project_id,
        )

        task = update.task
        with operations.session_scope() as session:
            operations.update_task_dates(task.id, task.start_date, task.end_date, task.duration, session=session)
            for updated in update.updated_tasks:
                operations.update_task_dates(updated.id, updated.start_date, updated.end_date, session=session)
            operations.record_audit_fact(update.audit, session=session)

        if update.stale_task_ids:
            logger.info(f"Ручное планирование: устаревшие сроки у задач {update.stale_task_ids}")
        return update


def _rewrite_task_dates(tasks, result, changes, session):
    for task in apply_schedule_changes(tasks, result, changes):
        operations.update_task_dates(task.id, task.start_date, task.end_date, session=session)


def allocate(project_id, task_id, resource_id, allocated_units, start_date, end_date, actor=None,
             overtime=False, check_over_allocation=OVERALLOCATION_CHECK, ceiling=ALLOCATION_CEILING):
    """
    Назначает сохраненный ресурс на задачу сохраненного проекта.

    Returns:
        AllocationChange, у распределения - ID из БД

    Raises:
        InvalidReferenceError: ресурс не найден
    """
    with resource_lock(resource_id):
        resource = operations.get_resource(resource_id)
        if resource is None:
            logger.error(f"Ресурс не найден: {resource_id}")
            raise InvalidReferenceError(f"Resource {resource_id} does not exist")

        snapshot = _load_project(project_id)
        existing = operations.get_resource_allocations(
            resource_id, statuses=[AllocationStatus.PLANNED, AllocationStatus.ACTIVE]
        )

        change = allocate_resource(
            project_id, task_id, resource_id, allocated_units, start_date, end_date,
            tasks=snapshot['tasks'],
            existing_allocations=existing,
            resource_type=resource['resource_type'],
            daily_rate=resource['daily_rate'],
            overtime=overtime,
            check_over_allocation=check_over_allocation,
            ceiling=ceiling,
            actor=actor,
        )

        with operations.session_scope() as session:
            allocation_id = operations.save_resource_allocation(change.allocation, session=session)
            audit = _with_id(change.audit, 'allocation_id', allocation_id)
            operations.record_audit_fact(audit, session=session)

        change.allocation = dataclasses.replace(change.allocation, id=allocation_id)
        change.audit = audit
        return change


def set_allocation_status(allocation_id, status, actor=None):
    """Переводит сохраненное распределение на новый статус."""
    allocation = operations.get_allocation(allocation_id)
    if allocation is None:
        raise NotFoundError(f"Allocation {allocation_id} not found")

    with resource_lock(allocation.resource_id):
        allocation = operations.get_allocation(allocation_id)
        change = advance_allocation_status(allocation, status, actor=actor)
        with operations.session_scope() as session:
            operations.update_allocation_status(allocation_id, change.allocation.status, session=session)
            operations.record_audit_fact(change.audit, session=session)
        return change
