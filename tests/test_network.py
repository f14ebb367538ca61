import random
from datetime import date, timedelta

import pytest

from planning.errors import CycleError, InvalidReferenceError
from planning.models import DependencyType, Task, TaskDependency
from planning.network import (
    add_task_start_finish_dates,
    calculate_critical_path,
    get_task_dependencies_graph,
)

JAN = lambda day: date(2025, 1, day)


def task(task_id, start, end):
    return Task(task_id, name=f"Task {task_id}", start_date=JAN(start), end_date=JAN(end))


def dep(pred, succ, kind=DependencyType.FINISH_TO_START, lag=0):
    return TaskDependency(pred, succ, kind, lag)


def test_two_tasks_in_sequence():
    tasks = [task('A', 1, 5), task('B', 6, 10)]
    result = calculate_critical_path(tasks, [dep('A', 'B')])

    assert result.early_start_date('B') == JAN(6)
    assert result.early_start_date('B') == result.early_finish_date('A')
    assert result.project_duration == 10
    assert result.per_task_schedule['A'].slack == 0
    assert result.per_task_schedule['B'].slack == 0
    assert result.critical_tasks == ['A', 'B']
    assert result.critical_path == ['A', 'B']


def test_parallel_branches_merge():
    tasks = [task('A', 1, 5), task('B', 1, 5), task('C', 6, 8)]
    result = calculate_critical_path(tasks, [dep('A', 'C'), dep('B', 'C')])

    schedule = result.per_task_schedule
    assert schedule['C'].early_start == max(schedule['A'].early_finish, schedule['B'].early_finish)
    assert result.project_duration == 8
    assert set(result.critical_tasks) == {'A', 'B', 'C'}
    # A и B равны, выбирается меньший идентификатор
    assert result.critical_path == ['A', 'C']


def test_shorter_branch_has_slack():
    tasks = [task('A', 1, 10), task('B', 1, 3), task('C', 11, 12)]
    result = calculate_critical_path(tasks, [dep('A', 'C'), dep('B', 'C')])

    b = result.per_task_schedule['B']
    assert b.slack == 7
    assert b.free_slack == 7
    assert b.late_start == 7
    assert b.late_finish == 10
    assert not b.is_critical
    assert result.critical_path == ['A', 'C']


def test_positive_and_negative_lag():
    tasks = [task('A', 1, 5), Task('B', duration=3)]

    delayed = calculate_critical_path(tasks, [dep('A', 'B', lag=2)])
    assert delayed.per_task_schedule['B'].early_start == 7
    assert delayed.project_duration == 10

    overlapped = calculate_critical_path(tasks, [dep('A', 'B', lag=-2)])
    assert overlapped.per_task_schedule['B'].early_start == 3
    assert overlapped.project_duration == 6


def test_start_to_start():
    tasks = [task('A', 1, 5), Task('B', duration=3)]
    result = calculate_critical_path(tasks, [dep('A', 'B', DependencyType.START_TO_START, lag=1)])

    b = result.per_task_schedule['B']
    assert (b.early_start, b.early_finish) == (1, 4)
    assert b.slack == 1
    assert result.project_duration == 5
    assert result.critical_path == ['A']


def test_finish_to_finish():
    tasks = [task('A', 1, 5), Task('B', duration=3)]
    result = calculate_critical_path(tasks, [dep('A', 'B', DependencyType.FINISH_TO_FINISH)])

    b = result.per_task_schedule['B']
    assert (b.early_start, b.early_finish) == (2, 5)
    assert result.critical_path == ['A', 'B']


def test_start_to_finish_never_starts_before_project():
    tasks = [task('A', 1, 5), Task('B', duration=3)]
    result = calculate_critical_path(tasks, [dep('A', 'B', DependencyType.START_TO_FINISH)])

    b = result.per_task_schedule['B']
    assert b.early_start == 0
    assert b.slack == 2
    assert result.project_duration == 5


def test_start_to_start_predecessor_finishing_last():
    tasks = [Task('P', duration=10), Task('S', duration=2)]
    result = calculate_critical_path(tasks, [dep('P', 'S', DependencyType.START_TO_START)])

    assert result.project_duration == 10
    assert result.per_task_schedule['S'].slack == 8
    assert result.critical_path == ['P']


def test_isolated_short_task_is_not_critical():
    tasks = [task('A', 1, 10), task('X', 1, 2)]
    result = calculate_critical_path(tasks, [])

    assert result.per_task_schedule['X'].slack == 8
    assert result.critical_tasks == ['A']
    assert result.critical_path == ['A']


def test_isolated_task_alone_is_critical():
    result = calculate_critical_path([task('A', 1, 4)], [])

    assert result.project_duration == 4
    assert result.critical_path == ['A']


def test_task_starting_later_keeps_its_start():
    tasks = [task('A', 1, 5), task('B', 4, 10)]
    result = calculate_critical_path(tasks, [])

    assert result.per_task_schedule['B'].early_start == 3
    assert result.project_duration == 10
    assert result.critical_path == ['B']


def test_tie_break_prefers_lower_id_between_equal_chains():
    tasks = [task('b1', 1, 5), task('b2', 6, 8), task('a1', 1, 5), task('a2', 6, 8)]
    deps = [dep('b1', 'b2'), dep('a1', 'a2')]

    result = calculate_critical_path(tasks, deps)

    assert set(result.critical_tasks) == {'a1', 'a2', 'b1', 'b2'}
    assert result.critical_path == ['a1', 'a2']


def test_tie_break_prefers_latest_finish_over_id():
    tasks = [task('z', 1, 5), task('a', 1, 3), Task('S', duration=2)]
    deps = [dep('z', 'S'), dep('a', 'S', lag=2)]

    result = calculate_critical_path(tasks, deps)

    assert result.per_task_schedule['a'].slack == 0
    assert result.critical_path == ['z', 'S']


def test_tasks_without_dates():
    tasks = [Task('A', duration=3), Task('B', duration=2)]
    result = calculate_critical_path(tasks, [dep('A', 'B')])

    assert result.project_duration == 5
    assert result.project_start is None
    assert result.early_start_date('B') is None


def test_empty_project():
    result = calculate_critical_path([], [])

    assert result.project_duration == 0
    assert result.critical_path == []
    assert result.per_task_schedule == {}


def test_bad_graph_is_not_partially_computed():
    with pytest.raises(InvalidReferenceError):
        calculate_critical_path([task('A', 1, 5)], [dep('A', 'B')])
    with pytest.raises(CycleError):
        calculate_critical_path([task('A', 1, 5), task('B', 6, 7)], [dep('A', 'B'), dep('B', 'A')])


def test_calendar_dates():
    tasks = [task('A', 1, 5), task('B', 6, 10)]
    result = calculate_critical_path(tasks, [dep('A', 'B')])

    dates = add_task_start_finish_dates(result)

    assert dates['B']['start_date'] == JAN(6)
    assert dates['B']['end_date'] == JAN(10)
    assert result.project_finish == JAN(11)


def test_dependency_graph_view():
    tasks = [task('A', 1, 10), task('B', 1, 3), task('C', 11, 12)]
    deps = [dep('A', 'C'), dep('B', 'C', lag=1)]
    result = calculate_critical_path(tasks, deps)

    view = get_task_dependencies_graph(tasks, deps, result)

    nodes = {node['id']: node for node in view['nodes']}
    assert nodes['A']['is_critical'] and nodes['A']['on_critical_path']
    assert not nodes['B']['is_critical']
    assert nodes['B']['slack'] == 6
    assert {'from': 'B', 'to': 'C', 'type': 'finish_to_start', 'lag': 1} in view['edges']


def random_project(rng, size, kinds):
    base = JAN(1)
    tasks = [
        Task(f"T{i:03d}", start_date=base + timedelta(days=rng.randint(0, 5)), duration=rng.randint(1, 6))
        for i in range(size)
    ]
    deps = []
    for j in range(1, size):
        for i in rng.sample(range(j), k=min(j, rng.randint(0, 2))):
            deps.append(TaskDependency(tasks[i].id, tasks[j].id, rng.choice(kinds), rng.randint(-2, 3)))
    return tasks, deps


ALL_KINDS = list(DependencyType)


@pytest.mark.parametrize('seed', range(20))
def test_slack_properties(seed):
    rng = random.Random(seed)
    tasks, deps = random_project(rng, 25, ALL_KINDS)

    result = calculate_critical_path(tasks, deps)

    for schedule in result.per_task_schedule.values():
        assert schedule.slack >= 0
        assert schedule.slack == schedule.late_start - schedule.early_start
        assert schedule.slack == schedule.late_finish - schedule.early_finish
        assert 0 <= schedule.free_slack <= schedule.slack
        assert schedule.early_finish <= result.project_duration

    zero_slack = {t for t, s in result.per_task_schedule.items() if s.slack == 0}
    assert set(result.critical_tasks) == zero_slack
    assert result.critical_path
    assert set(result.critical_path) <= zero_slack

    edges = {(d.predecessor_task_id, d.successor_task_id) for d in deps}
    for pred, succ in zip(result.critical_path, result.critical_path[1:]):
        assert (pred, succ) in edges


@pytest.mark.parametrize('seed', range(10))
def test_recalculation_is_idempotent(seed):
    rng = random.Random(seed)
    tasks, deps = random_project(rng, 30, ALL_KINDS)

    first = calculate_critical_path(tasks, deps)
    second = calculate_critical_path(tasks, deps)

    assert first.project_duration == second.project_duration
    assert first.per_task_schedule == second.per_task_schedule
    assert first.critical_path == second.critical_path


def successors_of(task_id, deps):
    found, stack = set(), [task_id]
    while stack:
        current = stack.pop()
        for d in deps:
            if d.predecessor_task_id == current and d.successor_task_id not in found:
                found.add(d.successor_task_id)
                stack.append(d.successor_task_id)
    return found


@pytest.mark.parametrize('seed', range(10))
def test_longer_task_never_shortens_project(seed):
    rng = random.Random(seed)
    kinds = [DependencyType.FINISH_TO_START, DependencyType.START_TO_START]
    tasks, deps = random_project(rng, 20, kinds)
    before = calculate_critical_path(tasks, deps)

    index = rng.randrange(len(tasks))
    target = tasks[index]
    longer = Task(target.id, start_date=target.start_date, duration=target.duration + rng.randint(1, 5))
    changed = tasks[:index] + [longer] + tasks[index + 1:]
    after = calculate_critical_path(changed, deps)

    assert after.project_duration >= before.project_duration
    for succ in successors_of(target.id, deps):
        assert after.per_task_schedule[succ].early_start >= before.per_task_schedule[succ].early_start
        assert after.per_task_schedule[succ].early_finish >= before.per_task_schedule[succ].early_finish


def test_longer_task_under_finish_to_finish_can_pull_successors_earlier():
    # Длительность T растет, а окончание задает FF-связь: T начинается раньше
    def project(t_duration):
        tasks = [Task('P', duration=10), Task('T', duration=t_duration), Task('S', duration=10)]
        deps = [dep('P', 'T', DependencyType.FINISH_TO_FINISH), dep('T', 'S', DependencyType.START_TO_START)]
        return calculate_critical_path(tasks, deps)

    short, longer = project(2), project(5)

    assert short.per_task_schedule['T'].early_start == 8
    assert longer.per_task_schedule['T'].early_start == 5
    assert short.per_task_schedule['S'].early_start == 8
    assert longer.per_task_schedule['S'].early_start == 5
    assert (short.project_duration, longer.project_duration) == (18, 15)
