from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, JSON, Date as SQLAlchemyDate
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()


class Project(Base):
    """Модель проекта в БД."""
    __tablename__ = 'projects'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    start_date = Column(SQLAlchemyDate, nullable=True)

    tasks = relationship("Task", back_populates="project")

    def __repr__(self):
        return f"<Project(id={self.id}, name='{self.name}')>"


class Task(Base):
    """Модель задачи в БД."""
    __tablename__ = 'tasks'

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False)
    name = Column(String, nullable=False)
    start_date = Column(SQLAlchemyDate, nullable=True)
    end_date = Column(SQLAlchemyDate, nullable=True)  # Включительно
    duration = Column(Integer, nullable=True)  # Используется, если даты не заданы
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    project = relationship("Project", back_populates="tasks")
    predecessors = relationship(
        "TaskDependency",
        foreign_keys="[TaskDependency.successor_id]",
        back_populates="successor"
    )

    def __repr__(self):
        return f"<Task(id={self.id}, name='{self.name}', start={self.start_date}, end={self.end_date})>"


class TaskDependency(Base):
    """Модель зависимости между задачами в БД."""
    __tablename__ = 'task_dependencies'

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False)
    successor_id = Column(Integer, ForeignKey('tasks.id'), nullable=False)
    predecessor_id = Column(Integer, ForeignKey('tasks.id'), nullable=False)
    dependency_type = Column(String, nullable=False, default='finish_to_start')
    lag_days = Column(Integer, nullable=False, default=0)

    successor = relationship("Task", foreign_keys=[successor_id], back_populates="predecessors")
    predecessor = relationship("Task", foreign_keys=[predecessor_id])

    def __repr__(self):
        return (f"<TaskDependency(predecessor_id={self.predecessor_id}, successor_id={self.successor_id}, "
                f"type='{self.dependency_type}', lag={self.lag_days})>")


class Resource(Base):
    """Модель ресурса (сотрудник, техника) в БД."""
    __tablename__ = 'resources'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    resource_type = Column(String, nullable=False, default='worker')
    daily_rate = Column(Numeric(12, 2), nullable=True)

    allocations = relationship("ResourceAllocation", back_populates="resource")

    def __repr__(self):
        return f"<Resource(id={self.id}, name='{self.name}', type='{self.resource_type}')>"


class ResourceAllocation(Base):
    """Модель распределения ресурса на задачу в БД. Записи не удаляются, только отменяются."""
    __tablename__ = 'resource_allocations'

    id = Column(Integer, primary_key=True)
    resource_id = Column(Integer, ForeignKey('resources.id'), nullable=False)
    task_id = Column(Integer, ForeignKey('tasks.id'), nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False)
    start_date = Column(SQLAlchemyDate, nullable=False)
    end_date = Column(SQLAlchemyDate, nullable=False)
    allocation_percentage = Column(Numeric(6, 2), nullable=False)
    estimated_cost = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default='planned')
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    resource = relationship("Resource", back_populates="allocations")

    def __repr__(self):
        return (f"<ResourceAllocation(id={self.id}, resource_id={self.resource_id}, task_id={self.task_id}, "
                f"percentage={self.allocation_percentage}, status='{self.status}')>")


class AuditLog(Base):
    """Модель записи журнала аудита в БД."""
    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, nullable=True)
    action = Column(String, nullable=False)
    actor = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.now)
    payload = Column(JSON, nullable=False, default=dict)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor='{self.actor}')>"
