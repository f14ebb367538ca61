# planning/network.py
"""
Модуль для расчета параметров сетевой модели и определения критического пути
"""
from datetime import timedelta

from logger import logger
from planning.graph import build_graph
from planning.models import CriticalPathResult, DependencyType, TaskSchedule


def calculate_critical_path(tasks, dependencies):
    """
    Рассчитывает параметры сетевой модели методом критического пути.

    Все сроки считаются в целых календарных днях от начала проекта
    (самой ранней даты начала среди задач). Ранние и поздние сроки
    окончания - это границы: задача длительностью 5 дней, начатая в день 0,
    заканчивается в день 5.

    Args:
        tasks: Список задач
        dependencies: Список зависимостей между задачами

    Returns:
        CriticalPathResult с критическим путем, длительностью проекта
        и параметрами каждой задачи

    Raises:
        InvalidReferenceError, CycleError: граф зависимостей некорректен
    """
    tasks = list(tasks)
    dependencies = list(dependencies)

    if not tasks:
        logger.warning("Нет задач для расчета сетевой модели")
        return CriticalPathResult(
            critical_path=[],
            critical_tasks=[],
            project_duration=0,
            per_task_schedule={},
        )

    # Граф строится до расчета, ошибки графа не дают частичного результата
    graph = build_graph(tasks, dependencies)

    project_start = get_project_start(tasks)

    # Создаем сетевую модель
    network = create_network_model(tasks, graph, project_start)

    # Рассчитываем ранние сроки начала и окончания
    calculate_early_times(network, graph)

    project_duration = max(node['early_finish'] for node in network.values())

    # Рассчитываем поздние сроки начала и окончания
    calculate_late_times(network, graph, project_duration)

    # Рассчитываем резервы времени
    calculate_reserves(network, graph, project_duration)

    # Определяем критический путь
    critical_tasks = [task_id for task_id in graph.order if network[task_id]['reserve'] == 0]
    critical_path = identify_critical_path(network, graph)

    logger.info(f"Рассчитана сетевая модель: {len(network)} задач, проект: {project_duration} дней")
    logger.info(f"Критический путь: {critical_path}")

    per_task_schedule = {
        task_id: TaskSchedule(
            task_id=task_id,
            duration=node['duration'],
            early_start=node['early_start'],
            early_finish=node['early_finish'],
            late_start=node['late_start'],
            late_finish=node['late_finish'],
            slack=node['reserve'],
            free_slack=node['free_reserve'],
        )
        for task_id, node in network.items()
    }

    return CriticalPathResult(
        critical_path=critical_path,
        critical_tasks=critical_tasks,
        project_duration=project_duration,
        per_task_schedule=per_task_schedule,
        project_start=project_start,
    )


def get_project_start(tasks):
    """Возвращает самую раннюю дату начала среди задач или None."""
    starts = [task.start_date for task in tasks if task.start_date is not None]
    return min(starts) if starts else None


def create_network_model(tasks, graph, project_start):
    """
    Создает сетевую модель на основе задач.

    Args:
        tasks: Список задач
        graph: Граф зависимостей
        project_start: Дата начала проекта или None

    Returns:
        Словарь id -> узел сетевой модели, в топологическом порядке
    """
    tasks_by_id = {task.id: task for task in tasks}
    network = {}

    for task_id in graph.order:
        task = tasks_by_id[task_id]

        # Собственная дата начала учитывается только у задач без предшественников
        given_start = 0
        if project_start is not None and task.start_date is not None:
            given_start = (task.start_date - project_start).days

        network[task_id] = {
            'id': task_id,
            'name': task.name,
            'duration': task.duration_days,
            'given_start': given_start,
            'early_start': 0,
            'early_finish': 0,
            'late_start': 0,
            'late_finish': 0,
            'reserve': 0,
            'free_reserve': 0,
        }

    logger.debug(f"Создана сетевая модель: {len(network)} задач")
    return network


def earliest_start_for_edge(edge, network):
    """Ранний срок начала последователя, который допускает одна связь."""
    predecessor = network[edge.predecessor]
    duration = network[edge.successor]['duration']

    if edge.type == DependencyType.START_TO_START:
        return predecessor['early_start'] + edge.lag
    if edge.type == DependencyType.FINISH_TO_FINISH:
        return predecessor['early_finish'] + edge.lag - duration
    if edge.type == DependencyType.START_TO_FINISH:
        return predecessor['early_start'] + edge.lag - duration
    return predecessor['early_finish'] + edge.lag


def latest_finish_for_edge(edge, network):
    """Поздний срок окончания предшественника, который допускает одна связь."""
    successor = network[edge.successor]
    duration = network[edge.predecessor]['duration']

    if edge.type == DependencyType.START_TO_START:
        return successor['late_start'] - edge.lag + duration
    if edge.type == DependencyType.FINISH_TO_FINISH:
        return successor['late_finish'] - edge.lag
    if edge.type == DependencyType.START_TO_FINISH:
        return successor['late_finish'] - edge.lag + duration
    return successor['late_start'] - edge.lag


def edge_gap(edge, network):
    """Запас времени на связи: на сколько можно сдвинуть предшественника."""
    return network[edge.successor]['early_start'] - earliest_start_for_edge(edge, network)


def calculate_early_times(network, graph):
    """
    Рассчитывает ранние сроки начала и окончания для всех работ (прямой проход).

    Args:
        network: Сетевая модель
        graph: Граф зависимостей

    Returns:
        Обновленная сетевая модель с ранними сроками
    """
    for task_id, task in network.items():
        incoming = graph.incoming(task_id)

        if not incoming:
            # Задача без предшественников начинается в свою дату
            task['early_start'] = task['given_start']
        else:
            # Иначе - максимум по всем связям, но не раньше начала проекта
            task['early_start'] = max(0, max(earliest_start_for_edge(edge, network) for edge in incoming))

        task['early_finish'] = task['early_start'] + task['duration']

    return network


def calculate_late_times(network, graph, project_duration):
    """
    Рассчитывает поздние сроки начала и окончания для всех работ (обратный проход).

    Args:
        network: Сетевая модель с ранними сроками
        graph: Граф зависимостей
        project_duration: Длительность проекта в днях

    Returns:
        Обновленная сетевая модель с поздними сроками
    """
    for task_id in reversed(graph.order):
        task = network[task_id]
        late_finish = project_duration

        for edge in graph.outgoing(task_id):
            late_finish = min(late_finish, latest_finish_for_edge(edge, network))

        task['late_finish'] = late_finish
        task['late_start'] = late_finish - task['duration']

    return network


def calculate_reserves(network, graph, project_duration):
    """
    Рассчитывает полный и свободный резервы времени.

    Args:
        network: Сетевая модель с рассчитанными сроками
        graph: Граф зависимостей
        project_duration: Длительность проекта в днях

    Returns:
        Обновленная сетевая модель с резервами времени
    """
    for task_id, task in network.items():
        # Полный резерв = поздний срок начала - ранний срок начала
        task['reserve'] = task['late_start'] - task['early_start']

        # Свободный резерв не больше полного: при связях "начало-начало"
        # запас на связи может превышать время до конца проекта
        outgoing = graph.outgoing(task_id)
        if outgoing:
            free_reserve = min(edge_gap(edge, network) for edge in outgoing)
        else:
            free_reserve = project_duration - task['early_finish']
        task['free_reserve'] = max(0, min(free_reserve, task['reserve']))

    return network


def identify_critical_path(network, graph):
    """
    Определяет критический путь в сетевой модели.

    Путь строится от конца: выбирается критическая задача без критических
    последователей с самым поздним окончанием, затем по напряженным связям
    (без запаса) выбирается предшественник с самым поздним окончанием.
    При равенстве берется задача с меньшим идентификатором (в строковом виде).

    Args:
        network: Сетевая модель с рассчитанными резервами
        graph: Граф зависимостей

    Returns:
        Список идентификаторов задач критического пути от начала к концу
    """
    def is_tight(edge):
        return (
            network[edge.predecessor]['reserve'] == 0
            and network[edge.successor]['reserve'] == 0
            and edge_gap(edge, network) == 0
        )

    def rank(task_id):
        return -network[task_id]['early_finish'], str(task_id)

    ends = [
        task_id for task_id, task in network.items()
        if task['reserve'] == 0 and not any(is_tight(edge) for edge in graph.outgoing(task_id))
    ]
    if not ends:
        return []

    current = min(ends, key=rank)
    path = [current]

    while True:
        candidates = [edge.predecessor for edge in graph.incoming(current) if is_tight(edge)]
        if not candidates:
            break
        current = min(candidates, key=rank)
        path.append(current)

    path.reverse()
    return path


def get_task_dependencies_graph(tasks, dependencies, result):
    """
    Создает граф зависимостей между задачами для визуализации.

    Args:
        tasks: Список задач
        dependencies: Список зависимостей
        result: Результат расчета критического пути

    Returns:
        Словарь с данными для построения графа
    """
    critical = set(result.critical_tasks)
    on_path = set(result.critical_path)

    nodes = []
    for task in tasks:
        schedule = result.per_task_schedule.get(task.id)
        nodes.append({
            'id': task.id,
            'label': task.name,
            'is_critical': task.id in critical,
            'on_critical_path': task.id in on_path,
            'slack': schedule.slack if schedule else None,
        })

    edges = []
    for dep in dependencies:
        edges.append({
            'from': dep.predecessor_task_id,
            'to': dep.successor_task_id,
            'type': DependencyType(dep.dependency_type).value,
            'lag': dep.lag_time,
        })

    return {
        'nodes': nodes,
        'edges': edges
    }


def add_task_start_finish_dates(result, start_date=None):
    """
    Добавляет даты начала и окончания задач без учета выходных дней.

    Args:
        result: Результат расчета критического пути
        start_date: Дата начала проекта (по умолчанию - из результата)

    Returns:
        Словарь id -> даты раннего и позднего начала и окончания.
        Дата окончания включительная (последний рабочий день задачи).
    """
    start_date = start_date or result.project_start
    if start_date is None:
        return {}

    dates = {}
    for task_id, schedule in result.per_task_schedule.items():
        dates[task_id] = {
            'start_date': start_date + timedelta(days=schedule.early_start),
            'end_date': start_date + timedelta(days=schedule.early_finish - 1),
            'late_start_date': start_date + timedelta(days=schedule.late_start),
            'late_end_date': start_date + timedelta(days=schedule.late_finish - 1),
        }

    return dates
