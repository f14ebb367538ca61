from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional

TaskId = Hashable


class DependencyType(str, Enum):
    """Тип связи между задачами."""
    FINISH_TO_START = 'finish_to_start'
    START_TO_START = 'start_to_start'
    FINISH_TO_FINISH = 'finish_to_finish'
    START_TO_FINISH = 'start_to_finish'


class ResourceType(str, Enum):
    WORKER = 'worker'
    EQUIPMENT = 'equipment'
    MATERIAL = 'material'


class AllocationStatus(str, Enum):
    PLANNED = 'planned'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class SchedulingMode(str, Enum):
    AUTO = 'auto'
    MANUAL = 'manual'


@dataclass(frozen=True)
class Task:
    """Модель задачи.

    Дата окончания включительная: задача 1-5 января длится 5 дней.
    Если даты не заданы, используется длительность.
    """
    id: TaskId
    name: str = ''
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration: Optional[int] = None

    @property
    def duration_days(self) -> int:
        if self.start_date and self.end_date:
            return (self.end_date - self.start_date).days + 1
        if self.duration is not None:
            return self.duration
        return 1


@dataclass(frozen=True)
class TaskDependency:
    """Модель зависимости между задачами."""
    predecessor_task_id: TaskId
    successor_task_id: TaskId
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    lag_time: int = 0
    id: Optional[Hashable] = None


@dataclass(frozen=True)
class ResourceAllocation:
    """Распределение мощности ресурса на задачу."""
    resource_id: Hashable
    task_id: TaskId
    project_id: Hashable
    start_date: date
    end_date: date
    allocation_percentage: float
    resource_type: ResourceType = ResourceType.WORKER
    estimated_cost: Decimal = Decimal('0.00')
    status: AllocationStatus = AllocationStatus.PLANNED
    id: Optional[Hashable] = None
    created_by: Optional[str] = None

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def overlaps(self, start_date: date, end_date: date) -> bool:
        return self.start_date <= end_date and start_date <= self.end_date


@dataclass(frozen=True)
class TaskSchedule:
    """Параметры сетевой модели для одной задачи (в днях от начала проекта)."""
    task_id: TaskId
    duration: int
    early_start: int
    early_finish: int
    late_start: int
    late_finish: int
    slack: int
    free_slack: int

    @property
    def is_critical(self) -> bool:
        return self.slack == 0


@dataclass
class CriticalPathResult:
    critical_path: List[TaskId]
    critical_tasks: List[TaskId]
    project_duration: int
    per_task_schedule: Dict[TaskId, TaskSchedule]
    project_start: Optional[date] = None

    def to_date(self, offset: int) -> Optional[date]:
        if self.project_start is None:
            return None
        return self.project_start + timedelta(days=offset)

    def early_start_date(self, task_id) -> Optional[date]:
        return self.to_date(self.per_task_schedule[task_id].early_start)

    def early_finish_date(self, task_id) -> Optional[date]:
        return self.to_date(self.per_task_schedule[task_id].early_finish)

    def late_start_date(self, task_id) -> Optional[date]:
        return self.to_date(self.per_task_schedule[task_id].late_start)

    def late_finish_date(self, task_id) -> Optional[date]:
        return self.to_date(self.per_task_schedule[task_id].late_finish)

    @property
    def project_finish(self) -> Optional[date]:
        return self.to_date(self.project_duration)


@dataclass(frozen=True)
class AuditFact:
    """Факт для журнала аудита. Запись в хранилище выполняет вызывающая сторона."""
    action: str
    actor: Optional[str]
    timestamp: datetime
    payload: Dict[str, Any] = field(default_factory=dict)
    project_id: Optional[Hashable] = None


@dataclass(frozen=True)
class ScheduleChange:
    """Изменение расчетных сроков задачи после пересчета."""
    task_id: TaskId
    old_early_start: Any
    new_early_start: Any
    old_early_finish: Any
    new_early_finish: Any


@dataclass
class ScheduleUpdate:
    task: Optional[Task]
    propagation: List[ScheduleChange]
    result: CriticalPathResult
    mode: SchedulingMode = SchedulingMode.AUTO
    updated_tasks: List[Task] = field(default_factory=list)
    stale_task_ids: List[TaskId] = field(default_factory=list)
    audit: Optional[AuditFact] = None


@dataclass
class DependencyChange:
    dependency: TaskDependency
    dependencies: List[TaskDependency]
    result: CriticalPathResult
    propagation: List[ScheduleChange] = field(default_factory=list)
    audit: Optional[AuditFact] = None


@dataclass(frozen=True)
class ResourceConflict:
    resource_id: Hashable
    start_date: date
    end_date: date
    total_percentage: float
    allocation_ids: List[Hashable]
    severity: str


@dataclass
class AllocationChange:
    allocation: ResourceAllocation
    audit: Optional[AuditFact] = None
