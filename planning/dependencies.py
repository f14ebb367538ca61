"""
Добавление и удаление зависимостей между задачами.

Каждое изменение сначала проверяется на предлагаемом списке зависимостей;
списки вызывающей стороны не изменяются, поэтому отклоненное изменение
не оставляет частично примененных изменений.
"""
import uuid

from logger import logger
from planning.audit import DEPENDENCY_ADDED, DEPENDENCY_REMOVED, make_audit_fact
from planning.errors import CycleError, InvalidRangeError, InvalidReferenceError, NotFoundError
from planning.models import DependencyChange, DependencyType, TaskDependency
from planning.network import calculate_critical_path
from planning.schedule import diff_schedules


def add_task_dependency(tasks, dependencies, predecessor_id, successor_id,
                        dependency_type=DependencyType.FINISH_TO_START, lag_days=0,
                        actor=None, project_id=None, dependency_id=None):
    """
    Добавляет зависимость между двумя задачами.

    Args:
        tasks: Текущий снимок задач
        dependencies: Текущий снимок зависимостей
        predecessor_id: ID предшествующей задачи
        successor_id: ID последующей задачи
        dependency_type: Одно из значений DependencyType
        lag_days: Задержка в целых днях, может быть отрицательной
        actor: Автор изменения, для журнала аудита
        project_id: ID проекта, для журнала аудита
        dependency_id: ID новой зависимости (генерируется, если не задан)

    Returns:
        DependencyChange с новой зависимостью, новым списком зависимостей
        и пересчитанным критическим путем

    Raises:
        InvalidReferenceError: одна из задач не существует
        CycleError: зависимость замыкает цикл
        InvalidRangeError: задержка не в целых днях
    """
    if isinstance(lag_days, bool) or not isinstance(lag_days, int):
        raise InvalidRangeError(f"Lag must be a whole number of days, got {lag_days!r}")

    tasks = list(tasks)
    task_ids = {task.id for task in tasks}
    for ref in (predecessor_id, successor_id):
        if ref not in task_ids:
            logger.error(f"Зависимость ссылается на несуществующую задачу: {ref}")
            raise InvalidReferenceError(f"Task {ref} does not exist", task_id=ref)

    if predecessor_id == successor_id:
        logger.warning(f"Отклонена зависимость задачи {predecessor_id} от самой себя")
        raise CycleError([predecessor_id, successor_id])

    dependency = TaskDependency(
        predecessor_task_id=predecessor_id,
        successor_task_id=successor_id,
        dependency_type=DependencyType(dependency_type),
        lag_time=lag_days,
        id=dependency_id if dependency_id is not None else uuid.uuid4().hex,
    )

    proposed = list(dependencies) + [dependency]

    # Граф проверяется до того, как зависимость попадет в результат
    result = calculate_critical_path(tasks, proposed)

    logger.info(
        f"Создана зависимость: {predecessor_id} -> {successor_id} "
        f"({dependency.dependency_type.value}, задержка {lag_days})"
    )

    return DependencyChange(
        dependency=dependency,
        dependencies=proposed,
        result=result,
        audit=make_audit_fact(
            DEPENDENCY_ADDED,
            actor=actor,
            project_id=project_id,
            dependency_id=dependency.id,
            predecessor_task_id=predecessor_id,
            successor_task_id=successor_id,
            dependency_type=dependency.dependency_type,
            lag_time=lag_days,
        ),
    )


def remove_task_dependency(tasks, dependencies, dependency_id, actor=None, project_id=None):
    """
    Удаляет зависимость и пересчитывает расписание.

    Returns:
        DependencyChange с удаленной зависимостью, оставшимся списком,
        новым критическим путем и задачами, чьи ранние сроки сдвинулись

    Raises:
        NotFoundError: неизвестный ID зависимости
    """
    tasks = list(tasks)
    dependencies = list(dependencies)

    removed = next((dep for dep in dependencies if dep.id == dependency_id), None)
    if removed is None:
        logger.warning(f"Зависимость {dependency_id} не найдена")
        raise NotFoundError(f"Dependency {dependency_id} not found")

    remaining = [dep for dep in dependencies if dep.id != dependency_id]

    before = calculate_critical_path(tasks, dependencies)
    after = calculate_critical_path(tasks, remaining)
    propagation = diff_schedules(before, after)

    logger.info(
        f"Удалена зависимость: {removed.predecessor_task_id} -> {removed.successor_task_id}, "
        f"сдвинуто задач: {len(propagation)}"
    )

    return DependencyChange(
        dependency=removed,
        dependencies=remaining,
        result=after,
        propagation=propagation,
        audit=make_audit_fact(
            DEPENDENCY_REMOVED,
            actor=actor,
            project_id=project_id,
            dependency_id=dependency_id,
            predecessor_task_id=removed.predecessor_task_id,
            successor_task_id=removed.successor_task_id,
            propagated=[change.task_id for change in propagation],
        ),
    )


def get_task_dependencies(dependencies, task_id):
    """
    Возвращает зависимости, связанные с задачей.

    Returns:
        Словарь со списками 'incoming' (задача - последующая) и
        'outgoing' (задача - предшествующая)
    """
    return {
        'incoming': [dep for dep in dependencies if dep.successor_task_id == task_id],
        'outgoing': [dep for dep in dependencies if dep.predecessor_task_id == task_id],
    }
