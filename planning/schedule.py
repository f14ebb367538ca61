"""
Изменение сроков задачи: применяет новые даты к одной задаче и определяет,
у каких задач из-за этого сдвигаются расчетные сроки.

Модуль ничего не пишет в хранилище. В автоматическом режиме вызывающая
сторона получает задачи с новыми датами для сохранения, в ручном - только
ID задач, чьи сохраненные даты устарели.
"""
import dataclasses
from datetime import timedelta

from logger import logger
from planning.audit import SCHEDULE_UPDATED, make_audit_fact
from planning.errors import InvalidRangeError, NotFoundError
from planning.models import ScheduleChange, ScheduleUpdate, SchedulingMode
from planning.network import calculate_critical_path


def diff_schedules(before, after, exclude=()):
    """
    Сравнивает два результата расчета критического пути и возвращает
    задачи, у которых сдвинулось раннее начало или раннее окончание.

    Сравниваются даты, а не смещения в днях: сдвиг самой ранней задачи
    сдвигает и начало проекта.
    """
    dated = before.project_start is not None and after.project_start is not None

    def points(result, task_id):
        if task_id not in result.per_task_schedule:
            return None, None
        if dated:
            return result.early_start_date(task_id), result.early_finish_date(task_id)
        schedule = result.per_task_schedule[task_id]
        return schedule.early_start, schedule.early_finish

    changes = []
    for task_id in after.per_task_schedule:
        if task_id in exclude:
            continue

        old_es, old_ef = points(before, task_id)
        new_es, new_ef = points(after, task_id)

        if old_es != new_es or old_ef != new_ef:
            changes.append(ScheduleChange(
                task_id=task_id,
                old_early_start=old_es,
                new_early_start=new_es,
                old_early_finish=old_ef,
                new_early_finish=new_ef,
            ))
    return changes


def apply_schedule_changes(tasks, result, changes):
    """Переносит сохраненные даты сдвинутых задач на их новые ранние сроки."""
    changed = {change.task_id for change in changes}
    updated = []
    for task in tasks:
        if task.id not in changed:
            continue
        start = result.early_start_date(task.id)
        if start is None:
            continue
        schedule = result.per_task_schedule[task.id]
        updated.append(dataclasses.replace(
            task,
            start_date=start,
            end_date=start + timedelta(days=schedule.duration - 1),
        ))
    return updated


def update_task_schedule(tasks, dependencies, task_id, start_date=None, end_date=None,
                         duration=None, mode=SchedulingMode.AUTO, actor=None, project_id=None):
    """
    Изменяет сроки одной задачи и пересчитывает расписание проекта.

    Args:
        tasks: Текущий снимок задач
        dependencies: Текущий снимок зависимостей
        task_id: ID изменяемой задачи
        start_date: Новая дата начала (без других параметров длительность сохраняется)
        end_date: Новая дата окончания (включительно)
        duration: Новая длительность в днях (окончание считается от начала)
        mode: 'auto' - вернуть задачи с новыми датами, 'manual' - только ID устаревших
        actor: Автор изменения, для журнала аудита
        project_id: ID проекта, для журнала аудита

    Returns:
        ScheduleUpdate с измененной задачей, списком сдвинутых задач
        и новым результатом расчета критического пути

    Raises:
        NotFoundError: задача не найдена
        InvalidRangeError: переданное начало не раньше переданного окончания,
            итоговое окончание раньше начала или длительность меньше 1 дня
    """
    mode = SchedulingMode(mode)
    tasks = list(tasks)
    dependencies = list(dependencies)

    task = next((t for t in tasks if t.id == task_id), None)
    if task is None:
        logger.warning(f"Задача {task_id} не найдена для изменения сроков")
        raise NotFoundError(f"Task {task_id} not found")

    if start_date is not None and end_date is not None and start_date >= end_date:
        raise InvalidRangeError(f"Start date {start_date} must be before end date {end_date}")
    if duration is not None and duration < 1:
        raise InvalidRangeError(f"Duration must be at least 1 day, got {duration}")

    updated_task = _reschedule(task, start_date, end_date, duration)
    # Однодневная задача начинается и заканчивается в один день
    if (updated_task.start_date is not None and updated_task.end_date is not None
            and updated_task.end_date < updated_task.start_date):
        raise InvalidRangeError(
            f"End date {updated_task.end_date} is before start date {updated_task.start_date}"
        )

    before = calculate_critical_path(tasks, dependencies)
    new_tasks = [updated_task if t.id == task_id else t for t in tasks]
    after = calculate_critical_path(new_tasks, dependencies)

    propagation = diff_schedules(before, after, exclude={task_id})

    update = ScheduleUpdate(
        task=updated_task,
        propagation=propagation,
        result=after,
        mode=mode,
    )
    if mode == SchedulingMode.AUTO:
        update.updated_tasks = apply_schedule_changes(new_tasks, after, propagation)
    else:
        update.stale_task_ids = [change.task_id for change in propagation]

    update.audit = make_audit_fact(
        SCHEDULE_UPDATED,
        actor=actor,
        project_id=project_id,
        task_id=task_id,
        old={'start_date': task.start_date, 'end_date': task.end_date, 'duration': task.duration},
        new={'start_date': updated_task.start_date, 'end_date': updated_task.end_date,
             'duration': updated_task.duration},
        propagated=[change.task_id for change in propagation],
        mode=mode,
    )

    logger.info(
        f"Сроки задачи {task_id} изменены, сдвинуто зависимых задач: {len(propagation)}, "
        f"длительность проекта {before.project_duration} -> {after.project_duration}"
    )
    return update


def _reschedule(task, start_date, end_date, duration):
    start = start_date if start_date is not None else task.start_date
    end = end_date if end_date is not None else task.end_date

    if duration is not None:
        if start is not None:
            end = start + timedelta(days=duration - 1)
    elif start_date is not None and end_date is None and task.start_date and task.end_date:
        # Сдвиг начала без изменения длительности
        end = start_date + timedelta(days=task.duration_days - 1)

    return dataclasses.replace(
        task,
        start_date=start,
        end_date=end,
        duration=duration if duration is not None else task.duration,
    )
