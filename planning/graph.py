# planning/graph.py
"""
Модуль для построения графа зависимостей между задачами
"""
from collections import deque, namedtuple
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Tuple

from logger import logger
from planning.errors import CycleError, InvalidReferenceError
from planning.models import DependencyType

Edge = namedtuple('Edge', ['predecessor', 'successor', 'type', 'lag'])


@dataclass(frozen=True)
class DependencyGraph:
    """Неизменяемый граф зависимостей, строится заново для каждого расчета."""
    task_ids: Tuple
    successors: Mapping
    predecessors: Mapping
    order: Tuple

    def outgoing(self, task_id):
        return self.successors.get(task_id, ())

    def incoming(self, task_id):
        return self.predecessors.get(task_id, ())

    def sources(self):
        return [task_id for task_id in self.order if not self.incoming(task_id)]

    def sinks(self):
        return [task_id for task_id in self.order if not self.outgoing(task_id)]


def build_graph(tasks, dependencies):
    """
    Строит граф зависимостей и проверяет его на отсутствие циклов.

    Args:
        tasks: Список задач
        dependencies: Список зависимостей между задачами

    Returns:
        DependencyGraph с топологическим порядком задач

    Raises:
        InvalidReferenceError: зависимость ссылается на несуществующую задачу
        CycleError: граф содержит цикл
    """
    task_ids = tuple(task.id for task in tasks)
    known = set(task_ids)

    successors = {task_id: [] for task_id in task_ids}
    predecessors = {task_id: [] for task_id in task_ids}

    for dep in dependencies:
        for ref in (dep.predecessor_task_id, dep.successor_task_id):
            if ref not in known:
                logger.error(f"Зависимость ссылается на несуществующую задачу: {ref}")
                raise InvalidReferenceError(f"Task {ref} does not exist", task_id=ref)

        edge = Edge(
            dep.predecessor_task_id,
            dep.successor_task_id,
            DependencyType(dep.dependency_type),
            int(dep.lag_time or 0),
        )
        successors[edge.predecessor].append(edge)
        predecessors[edge.successor].append(edge)

    order = topological_sort(task_ids, successors, predecessors)

    logger.debug(f"Построен граф: {len(task_ids)} задач, {len(dependencies)} зависимостей")

    return DependencyGraph(
        task_ids=task_ids,
        successors=MappingProxyType({k: tuple(v) for k, v in successors.items()}),
        predecessors=MappingProxyType({k: tuple(v) for k, v in predecessors.items()}),
        order=tuple(order),
    )


def topological_sort(task_ids, successors, predecessors):
    """
    Сортирует задачи в топологическом порядке (алгоритм Кана).

    Задачи без предшественников идут первыми, при равенстве сохраняется
    исходный порядок задач.

    Args:
        task_ids: Идентификаторы задач
        successors: Словарь id -> исходящие ребра
        predecessors: Словарь id -> входящие ребра

    Returns:
        Список идентификаторов в топологическом порядке

    Raises:
        CycleError: если отсортировать все задачи невозможно
    """
    in_degree = {task_id: len(predecessors.get(task_id, ())) for task_id in task_ids}
    queue = deque(task_id for task_id in task_ids if in_degree[task_id] == 0)
    order = []

    while queue:
        task_id = queue.popleft()
        order.append(task_id)
        for edge in successors.get(task_id, ()):
            in_degree[edge.successor] -= 1
            if in_degree[edge.successor] == 0:
                queue.append(edge.successor)

    if len(order) < len(task_ids):
        remaining = {task_id for task_id in task_ids if in_degree[task_id] > 0}
        cycle = find_cycle(remaining, predecessors)
        logger.error(f"Обнаружена циклическая зависимость: {' -> '.join(str(t) for t in cycle)}")
        raise CycleError(cycle)

    return order


def find_cycle(remaining, predecessors):
    """
    Находит один цикл среди задач, оставшихся после сортировки.

    У каждой такой задачи есть предшественник из того же множества,
    поэтому обход назад по предшественникам обязательно замыкается.
    """
    current = next(iter(sorted(remaining, key=str)))
    seen = {}
    path = []
    while current not in seen:
        seen[current] = len(path)
        path.append(current)
        current = next(
            edge.predecessor for edge in predecessors[current]
            if edge.predecessor in remaining
        )
    cycle = path[seen[current]:]
    cycle.reverse()
    return cycle + [cycle[0]]
