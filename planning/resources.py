"""
Распределение ресурсов: проверка, защита от перегрузки, жизненный цикл
статусов и отчеты о конфликтах и загрузке по снимку распределений.
"""
import dataclasses
from datetime import timedelta

from config import ALLOCATION_CEILING, MAX_OVERTIME_PERCENTAGE, OVERALLOCATION_CHECK
from logger import logger
from planning.audit import ALLOCATION_STATUS_CHANGED, RESOURCE_ALLOCATED, make_audit_fact
from planning.cost import estimate_cost
from planning.errors import InvalidRangeError, InvalidTransitionError, NotFoundError, OverAllocationError
from planning.models import AllocationChange, AllocationStatus, ResourceAllocation, ResourceConflict, ResourceType

# Статусы, которые занимают мощность ресурса
BUSY_STATUSES = (AllocationStatus.PLANNED, AllocationStatus.ACTIVE)

ALLOWED_TRANSITIONS = {
    AllocationStatus.PLANNED: {AllocationStatus.ACTIVE, AllocationStatus.CANCELLED},
    AllocationStatus.ACTIVE: {AllocationStatus.COMPLETED, AllocationStatus.CANCELLED},
    AllocationStatus.COMPLETED: set(),
    AllocationStatus.CANCELLED: set(),
}

OVERTIME_RESOURCE_TYPES = {ResourceType.WORKER}


def max_allocation_percentage(resource_type, overtime=False, max_overtime=MAX_OVERTIME_PERCENTAGE):
    """Верхняя граница одного распределения для типа ресурса."""
    if overtime and ResourceType(resource_type) in OVERTIME_RESOURCE_TYPES:
        return max_overtime
    return 100


def effective_ceiling(ceiling, resource_type, overtime=False, max_overtime=MAX_OVERTIME_PERCENTAGE):
    """
    Порог суммарной загрузки для нового распределения.

    Сверхурочное распределение работника поднимает порог до
    максимального процента сверхурочной работы.
    """
    return max(ceiling, max_allocation_percentage(resource_type, overtime, max_overtime))


def validate_allocation(start_date, end_date, percentage, resource_type=ResourceType.WORKER,
                        overtime=False, max_overtime=MAX_OVERTIME_PERCENTAGE):
    """
    Проверяет период и процент предлагаемого распределения.

    Raises:
        InvalidRangeError: начало не раньше окончания или процент вне диапазона
    """
    if start_date >= end_date:
        raise InvalidRangeError(f"Start date {start_date} must be before end date {end_date}")

    limit = max_allocation_percentage(resource_type, overtime, max_overtime)
    if isinstance(percentage, bool) or not 0 < percentage <= limit:
        raise InvalidRangeError(
            f"Allocation percentage must be in (0, {limit}] for {ResourceType(resource_type).value}, "
            f"got {percentage}"
        )


def concurrent_load(allocations, start_date, end_date, resource_id=None):
    """
    Находит пиковую суммарную загрузку занятых распределений в периоде.

    Загрузка растет только в день начала распределения, поэтому достаточно
    проверить начало периода и начала всех распределений внутри него.

    Returns:
        Кортеж (пиковая загрузка, {день: распределения, покрывающие его})
    """
    busy = [
        a for a in allocations
        if a.status in BUSY_STATUSES
        and (resource_id is None or a.resource_id == resource_id)
        and a.overlaps(start_date, end_date)
    ]

    points = {start_date}
    points.update(a.start_date for a in busy if a.start_date > start_date)

    peak = 0
    covering = {}
    for point in sorted(points):
        active = [a for a in busy if a.start_date <= point <= a.end_date]
        covering[point] = active
        peak = max(peak, sum(a.allocation_percentage for a in active))
    return peak, covering


def check_overallocation(resource_id, start_date, end_date, percentage, existing_allocations,
                         ceiling=ALLOCATION_CEILING):
    """
    Защита от перегрузки ресурса при новом распределении.

    Raises:
        InvalidRangeError: новое распределение само по себе выше порога
        OverAllocationError: вместе с пересекающимися распределениями
            загрузка в какой-то день выше порога
    """
    if percentage > ceiling:
        raise InvalidRangeError(
            f"Allocation of {percentage}% alone exceeds the ceiling of {ceiling}% for resource {resource_id}"
        )

    _, covering = concurrent_load(existing_allocations, start_date, end_date, resource_id=resource_id)

    peak = percentage
    conflicting = []
    for point, active in covering.items():
        total = percentage + sum(a.allocation_percentage for a in active)
        peak = max(peak, total)
        if total > ceiling:
            for allocation in active:
                if allocation not in conflicting:
                    conflicting.append(allocation)

    if peak > ceiling:
        logger.warning(
            f"Перегрузка ресурса {resource_id}: {peak}% > {ceiling}% "
            f"в период {start_date} - {end_date}"
        )
        raise OverAllocationError(resource_id, peak, ceiling, conflicting)


def allocate_resource(project_id, task_id, resource_id, allocated_units, start_date, end_date,
                      tasks, existing_allocations=(), resource_type=ResourceType.WORKER,
                      daily_rate=None, overtime=False, check_over_allocation=OVERALLOCATION_CHECK,
                      ceiling=ALLOCATION_CEILING, actor=None, allocation_id=None):
    """
    Проверяет и создает распределение ресурса на задачу.

    Args:
        project_id: ID проекта задачи
        task_id: ID задачи, получающей ресурс
        resource_id: ID работника или оборудования
        allocated_units: Процент мощности ресурса
        start_date: Первый день распределения
        end_date: Последний день распределения (включительно)
        tasks: Снимок задач для проверки существования задачи
        existing_allocations: Текущие распределения ресурса по всем проектам
        resource_type: ResourceType ресурса
        daily_rate: Стоимость полного дня ресурса, None если неизвестна
        overtime: Разрешить больше 100% для типов ресурсов со сверхурочной работой;
            порог суммарной загрузки тогда не ниже MAX_OVERTIME_PERCENTAGE
        check_over_allocation: Выполнять проверку суммарной загрузки
        ceiling: Порог суммарной загрузки в процентах
        actor: Автор распределения
        allocation_id: ID новой записи

    Returns:
        AllocationChange с запланированным распределением и фактом аудита

    Raises:
        NotFoundError, InvalidRangeError, OverAllocationError
    """
    if not any(task.id == task_id for task in tasks):
        logger.warning(f"Задача {task_id} не найдена для распределения ресурса")
        raise NotFoundError(f"Task {task_id} not found")

    resource_type = ResourceType(resource_type)
    validate_allocation(start_date, end_date, allocated_units, resource_type, overtime)

    if check_over_allocation:
        check_overallocation(resource_id, start_date, end_date, allocated_units, existing_allocations,
                             effective_ceiling(ceiling, resource_type, overtime))

    duration_days = (end_date - start_date).days + 1
    allocation = ResourceAllocation(
        resource_id=resource_id,
        task_id=task_id,
        project_id=project_id,
        start_date=start_date,
        end_date=end_date,
        allocation_percentage=allocated_units,
        resource_type=resource_type,
        estimated_cost=estimate_cost(allocated_units, duration_days, daily_rate),
        status=AllocationStatus.PLANNED,
        id=allocation_id,
        created_by=actor,
    )

    logger.info(f"Ресурс {resource_id} назначен на задачу {task_id}: {allocated_units}%, "
                f"{start_date} - {end_date}, стоимость {allocation.estimated_cost}")

    return AllocationChange(
        allocation=allocation,
        audit=make_audit_fact(
            RESOURCE_ALLOCATED,
            actor=actor,
            project_id=project_id,
            allocation_id=allocation_id,
            resource_id=resource_id,
            resource_type=resource_type,
            task_id=task_id,
            allocation_percentage=allocated_units,
            start_date=start_date,
            end_date=end_date,
            estimated_cost=allocation.estimated_cost,
        ),
    )


def advance_allocation_status(allocation, new_status, actor=None):
    """
    Переводит распределение на следующий статус.

    planned -> active -> completed, а также planned/active -> cancelled.

    Raises:
        InvalidTransitionError: любой другой переход
    """
    new_status = AllocationStatus(new_status)
    if new_status not in ALLOWED_TRANSITIONS[allocation.status]:
        raise InvalidTransitionError(
            f"Allocation {allocation.id} cannot move from {allocation.status.value} to {new_status.value}"
        )

    updated = dataclasses.replace(allocation, status=new_status)
    logger.info(f"Распределение {allocation.id}: {allocation.status.value} -> {new_status.value}")

    return AllocationChange(
        allocation=updated,
        audit=make_audit_fact(
            ALLOCATION_STATUS_CHANGED,
            actor=actor,
            project_id=allocation.project_id,
            allocation_id=allocation.id,
            old_status=allocation.status,
            new_status=new_status,
        ),
    )


def cancel_allocation(allocation, actor=None):
    return advance_allocation_status(allocation, AllocationStatus.CANCELLED, actor=actor)


def find_allocation(allocations, allocation_id):
    for allocation in allocations:
        if allocation.id == allocation_id:
            return allocation
    raise NotFoundError(f"Allocation {allocation_id} not found")


def get_task_resource_allocations(allocations, task_id):
    return [a for a in allocations if a.task_id == task_id]


def conflict_severity(total):
    if total > 150:
        return 'critical'
    if total > 120:
        return 'high'
    return 'medium'


def detect_overallocation_conflicts(allocations, ceiling=ALLOCATION_CEILING):
    """
    Находит периоды, когда ресурс загружен выше порога.

    Дни группируются по ресурсу; идущие подряд дни с одним и тем же
    набором распределений образуют один период конфликта.

    Returns:
        Список ResourceConflict, упорядоченный по ресурсу и дате начала
    """
    by_resource = {}
    for allocation in allocations:
        if allocation.status in BUSY_STATUSES:
            by_resource.setdefault(allocation.resource_id, []).append(allocation)

    conflicts = []
    for resource_id in sorted(by_resource, key=str):
        resource_allocations = by_resource[resource_id]
        first = min(a.start_date for a in resource_allocations)
        last = max(a.end_date for a in resource_allocations)

        current = None
        day = first
        while day <= last:
            active = [a for a in resource_allocations if a.start_date <= day <= a.end_date]
            total = sum(a.allocation_percentage for a in active)
            ids = [a.id for a in active]

            if total > ceiling:
                if current and current['ids'] == ids and current['end'] == day - timedelta(days=1):
                    current['end'] = day
                else:
                    if current:
                        conflicts.append(_make_conflict(resource_id, current))
                    current = {'start': day, 'end': day, 'ids': ids, 'total': total}
            elif current:
                conflicts.append(_make_conflict(resource_id, current))
                current = None

            day += timedelta(days=1)

        if current:
            conflicts.append(_make_conflict(resource_id, current))

    if conflicts:
        logger.warning(f"Найдено конфликтов перегрузки: {len(conflicts)}")
    return conflicts


def _make_conflict(resource_id, period):
    return ResourceConflict(
        resource_id=resource_id,
        start_date=period['start'],
        end_date=period['end'],
        total_percentage=period['total'],
        allocation_ids=period['ids'],
        severity=conflict_severity(period['total']),
    )


def calculate_resource_utilization(allocations, period_start, period_end):
    """
    Средняя загрузка каждого ресурса за отчетный период.

    Args:
        allocations: Снимок распределений
        period_start: Первый день периода
        period_end: Последний день периода (включительно)

    Returns:
        Словарь resource_id -> средний процент загрузки за период
    """
    if period_start > period_end:
        raise InvalidRangeError(f"Period start {period_start} is after period end {period_end}")

    window_days = (period_end - period_start).days + 1
    booked = {}
    for allocation in allocations:
        if allocation.status == AllocationStatus.CANCELLED:
            continue
        start = max(allocation.start_date, period_start)
        end = min(allocation.end_date, period_end)
        days = (end - start).days + 1
        booked.setdefault(allocation.resource_id, 0)
        if days > 0:
            booked[allocation.resource_id] += allocation.allocation_percentage * days

    return {resource_id: round(total / window_days, 2) for resource_id, total in booked.items()}
