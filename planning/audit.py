"""
Факты аудита, которые формируют изменяющие операции. Сохраняет их вызывающая сторона.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from planning.models import AuditFact

DEPENDENCY_ADDED = 'dependency_added'
DEPENDENCY_REMOVED = 'dependency_removed'
RESOURCE_ALLOCATED = 'resource_allocated'
SCHEDULE_UPDATED = 'schedule_updated'
ALLOCATION_STATUS_CHANGED = 'allocation_status_changed'


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def make_audit_fact(action, actor=None, project_id=None, **payload):
    """
    Создает факт аудита с данными, пригодными для JSON.

    Args:
        action: Одна из констант действий выше
        actor: Автор изменения
        project_id: ID проекта
        **payload: Описание изменения

    Returns:
        AuditFact
    """
    return AuditFact(
        action=action,
        actor=actor,
        timestamp=datetime.now(),
        payload=_plain(payload),
        project_id=project_id,
    )
