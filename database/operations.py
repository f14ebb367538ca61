from contextlib import contextmanager
from decimal import Decimal

from sqlalchemy import create_engine, or_
from sqlalchemy.orm import sessionmaker

from database.models import Base, Project, Task, TaskDependency, Resource, ResourceAllocation, AuditLog
from config import DATABASE_URL
from logger import logger
from planning import models as engine_models

# Создаем соединение с БД
engine = create_engine(DATABASE_URL)
Session = sessionmaker(bind=engine, expire_on_commit=False)


def init_db():
    """Инициализирует базу данных."""
    logger.info(f"Инициализация базы данных с URL: {DATABASE_URL}")
    try:
        Base.metadata.create_all(Session.kw['bind'])
        logger.info("База данных успешно инициализирована")

    except Exception as e:
        logger.error(f"Ошибка при инициализации базы данных: {str(e)}")
        raise


@contextmanager
def session_scope():
    """
    Контекстный менеджер для работы с сессиями SQLAlchemy.
    Автоматически выполняет commit при успешном завершении
    и rollback при возникновении исключения.
    """
    session = Session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Ошибка при работе с БД: {str(e)}")
        raise
    finally:
        session.close()


@contextmanager
def _use_session(session=None):
    """
    Работает в переданной сессии или открывает собственную транзакцию.

    Переданной сессией управляет вызывающая сторона: commit и rollback
    выполняет ее session_scope, поэтому несколько операций применяются
    вместе или не применяются совсем.
    """
    if session is not None:
        yield session
        return
    with session_scope() as own_session:
        yield own_session


def create_new_project(name, start_date=None):
    """
    Создает новый проект в БД.

    Args:
        name: Название проекта
        start_date: Дата начала проекта

    Returns:
        ID созданного проекта
    """
    with session_scope() as session:
        project = Project(name=name, start_date=start_date)
        session.add(project)
        session.flush()
        return project.id


def add_project_task(project_id, name, start_date=None, end_date=None, duration=None):
    """
    Добавляет задачу в проект.

    Args:
        project_id: ID проекта
        name: Название задачи
        start_date: Дата начала
        end_date: Дата окончания (включительно)
        duration: Длительность задачи в днях, если даты не заданы

    Returns:
        ID созданной задачи
    """
    with session_scope() as session:
        task = Task(
            project_id=project_id,
            name=name,
            start_date=start_date,
            end_date=end_date,
            duration=duration
        )
        session.add(task)
        session.flush()
        return task.id


def add_resource(name, resource_type='worker', daily_rate=None):
    """
    Добавляет ресурс.

    Returns:
        ID созданного ресурса
    """
    with session_scope() as session:
        resource = Resource(
            name=name,
            resource_type=engine_models.ResourceType(resource_type).value,
            daily_rate=daily_rate
        )
        session.add(resource)
        session.flush()
        logger.info(f"Создан ресурс '{name}' с ID {resource.id}")
        return resource.id


def get_resource(resource_id, session=None):
    """
    Получает ресурс по ID.

    Returns:
        Словарь с данными ресурса или None
    """
    with _use_session(session) as session:
        resource = session.get(Resource, resource_id)
        if not resource:
            return None
        return {
            'id': resource.id,
            'name': resource.name,
            'resource_type': engine_models.ResourceType(resource.resource_type),
            'daily_rate': resource.daily_rate,
        }


def _task_record(task):
    return engine_models.Task(
        id=task.id,
        name=task.name,
        start_date=task.start_date,
        end_date=task.end_date,
        duration=task.duration,
    )


def _dependency_record(dependency):
    return engine_models.TaskDependency(
        predecessor_task_id=dependency.predecessor_id,
        successor_task_id=dependency.successor_id,
        dependency_type=engine_models.DependencyType(dependency.dependency_type),
        lag_time=dependency.lag_days,
        id=dependency.id,
    )


def _allocation_record(allocation):
    return engine_models.ResourceAllocation(
        resource_id=allocation.resource_id,
        task_id=allocation.task_id,
        project_id=allocation.project_id,
        start_date=allocation.start_date,
        end_date=allocation.end_date,
        allocation_percentage=float(allocation.allocation_percentage),
        resource_type=engine_models.ResourceType(allocation.resource.resource_type),
        estimated_cost=Decimal(allocation.estimated_cost),
        status=engine_models.AllocationStatus(allocation.status),
        id=allocation.id,
        created_by=allocation.created_by,
    )


def get_project_snapshot(project_id, session=None):
    """
    Получает согласованный снимок задач, зависимостей и распределений проекта.

    Args:
        project_id: ID проекта

    Returns:
        Словарь с записями для модуля планирования или None, если проекта нет
    """
    with _use_session(session) as session:
        project = session.get(Project, project_id)
        if not project:
            return None

        tasks = session.query(Task).filter(Task.project_id == project_id).order_by(Task.id).all()
        dependencies = (
            session.query(TaskDependency)
            .filter(TaskDependency.project_id == project_id)
            .order_by(TaskDependency.id)
            .all()
        )
        allocations = (
            session.query(ResourceAllocation)
            .filter(ResourceAllocation.project_id == project_id)
            .order_by(ResourceAllocation.id)
            .all()
        )

        logger.debug(f"Снимок проекта {project_id}: {len(tasks)} задач, {len(dependencies)} зависимостей")

        return {
            'id': project.id,
            'name': project.name,
            'start_date': project.start_date,
            'tasks': [_task_record(t) for t in tasks],
            'dependencies': [_dependency_record(d) for d in dependencies],
            'allocations': [_allocation_record(a) for a in allocations],
        }


def get_resource_allocations(resource_id, statuses=None, session=None):
    """
    Получает распределения ресурса по всем проектам.

    Args:
        resource_id: ID ресурса
        statuses: Фильтр по статусам (по умолчанию - все)

    Returns:
        Список распределений
    """
    with _use_session(session) as session:
        query = session.query(ResourceAllocation).filter(ResourceAllocation.resource_id == resource_id)
        if statuses:
            query = query.filter(or_(*[
                ResourceAllocation.status == engine_models.AllocationStatus(s).value for s in statuses
            ]))
        return [_allocation_record(a) for a in query.order_by(ResourceAllocation.id).all()]


def get_allocation(allocation_id, session=None):
    with _use_session(session) as session:
        allocation = session.get(ResourceAllocation, allocation_id)
        return _allocation_record(allocation) if allocation else None


def save_task_dependency(project_id, dependency, session=None):
    """
    Сохраняет зависимость между задачами.

    Returns:
        ID созданной зависимости
    """
    with _use_session(session) as session:
        row = TaskDependency(
            project_id=project_id,
            predecessor_id=dependency.predecessor_task_id,
            successor_id=dependency.successor_task_id,
            dependency_type=engine_models.DependencyType(dependency.dependency_type).value,
            lag_days=dependency.lag_time
        )
        session.add(row)
        session.flush()
        return row.id


def delete_task_dependency(dependency_id, session=None):
    """
    Удаляет зависимость.

    Returns:
        True, если зависимость была удалена
    """
    with _use_session(session) as session:
        row = session.get(TaskDependency, dependency_id)
        if not row:
            return False
        session.delete(row)
        return True


def save_resource_allocation(allocation, session=None):
    """
    Сохраняет новое распределение ресурса.

    Returns:
        ID созданного распределения
    """
    with _use_session(session) as session:
        row = ResourceAllocation(
            resource_id=allocation.resource_id,
            task_id=allocation.task_id,
            project_id=allocation.project_id,
            start_date=allocation.start_date,
            end_date=allocation.end_date,
            allocation_percentage=allocation.allocation_percentage,
            estimated_cost=allocation.estimated_cost,
            status=engine_models.AllocationStatus(allocation.status).value,
            created_by=allocation.created_by
        )
        session.add(row)
        session.flush()
        return row.id


def update_allocation_status(allocation_id, status, session=None):
    with _use_session(session) as session:
        row = session.get(ResourceAllocation, allocation_id)
        if not row:
            return False
        row.status = engine_models.AllocationStatus(status).value
        return True


def update_task_dates(task_id, start_date, end_date, duration=None, session=None):
    """
    Обновляет даты задачи.

    Returns:
        True, если задача найдена
    """
    with _use_session(session) as session:
        task = session.get(Task, task_id)
        if not task:
            return False
        task.start_date = start_date
        task.end_date = end_date
        if duration is not None:
            task.duration = duration
        return True


def record_audit_fact(fact, session=None):
    """
    Записывает факт аудита.

    Returns:
        ID записи журнала
    """
    with _use_session(session) as session:
        entry = AuditLog(
            project_id=fact.project_id,
            action=fact.action,
            actor=fact.actor,
            timestamp=fact.timestamp,
            payload=fact.payload
        )
        session.add(entry)
        session.flush()
        return entry.id


def get_audit_log(project_id):
    with session_scope() as session:
        entries = (
            session.query(AuditLog)
            .filter(AuditLog.project_id == project_id)
            .order_by(AuditLog.id)
            .all()
        )
        return [
            {'action': e.action, 'actor': e.actor, 'timestamp': e.timestamp, 'payload': e.payload}
            for e in entries
        ]
