"""
Ошибки модуля планирования. Все ошибки восстановимые и передаются вызывающей стороне.
"""


class SchedulingError(Exception):
    """Базовая ошибка планирования."""


class InvalidReferenceError(SchedulingError, LookupError):
    """Зависимость или распределение ссылается на несуществующую задачу."""

    def __init__(self, message, task_id=None):
        super().__init__(message)
        self.task_id = task_id


class CycleError(SchedulingError, ValueError):
    """Граф зависимостей содержит цикл."""

    def __init__(self, cycle):
        self.cycle = list(cycle)
        super().__init__(f"Циклическая зависимость: {' -> '.join(str(t) for t in self.cycle)}")


class InvalidRangeError(SchedulingError, ValueError):
    """Начало не раньше окончания или процент вне допустимого диапазона."""


class OverAllocationError(SchedulingError):
    """Суммарная загрузка ресурса превышает порог."""

    def __init__(self, resource_id, total, ceiling, conflicting_allocations):
        self.resource_id = resource_id
        self.total = total
        self.ceiling = ceiling
        self.conflicting_allocations = list(conflicting_allocations)
        ids = ', '.join(str(a.id) for a in self.conflicting_allocations)
        super().__init__(
            f"Resource {resource_id} would be allocated {total}% (ceiling {ceiling}%), "
            f"conflicting allocations: {ids}"
        )


class NotFoundError(SchedulingError, LookupError):
    """Неизвестный идентификатор задачи, зависимости или распределения."""


class InvalidTransitionError(SchedulingError):
    """Недопустимая смена статуса распределения."""
