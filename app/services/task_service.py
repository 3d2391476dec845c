import logging

from app.cache import keys
from app.cache.decorators import async_cached, invalidates
from app.cache.layer import CacheLayer
from app.core.exceptions import (
    InvalidTransitionError,
    TaskNotFoundError,
    TaskValidationError,
)
from app.models import (
    DELETABLE_STATUSES,
    TaskCreate,
    TaskPriority,
    TaskRead,
    TaskStatistics,
    TaskStatus,
    TaskUpdate,
    build_statistics,
    can_transition,
    collect_validation_errors,
)
from app.repositories.task_repository import TaskRepository

logger = logging.getLogger(__name__)


def _validated(data: dict, partial: bool) -> dict:
    errors = collect_validation_errors(data, partial=partial)
    if errors:
        raise TaskValidationError(errors)
    if data.get("status") is not None:
        data["status"] = TaskStatus(data["status"])
    if data.get("priority") is not None:
        data["priority"] = TaskPriority(data["priority"])
    return data


class TaskService:
    """
    Reads go through the cache; every successful mutation flushes the whole
    ``tasks:*`` namespace so the next read reloads from the database.

    Concurrent updates of one task are last-write-wins: the DONE check and the
    write are separate statements with no version column between them.
    """

    def __init__(self, repository: TaskRepository, cache: CacheLayer):
        self.repository = repository
        self.cache = cache

    @async_cached(
        lambda self: keys.ALL_TASKS, schema=list[TaskRead], ttl=keys.TASK_TTL_SECONDS
    )
    async def list_tasks(self) -> list[TaskRead]:
        tasks = await self.repository.find_all()
        return [TaskRead.model_validate(task) for task in tasks]

    @async_cached(
        lambda self, task_id: keys.task_key(task_id),
        schema=TaskRead,
        ttl=keys.TASK_TTL_SECONDS,
    )
    async def get_task(self, task_id: int) -> TaskRead:
        task = await self.repository.find_by_id(task_id)
        if not task:
            raise TaskNotFoundError(task_id)
        return TaskRead.model_validate(task)

    @invalidates(keys.ALL_TASK_KEYS)
    async def create_task(self, task_data: TaskCreate) -> TaskRead:
        data = _validated(task_data.model_dump(), partial=False)
        task = await self.repository.create(data)
        logger.info(f"Created task {task.id}")
        return TaskRead.model_validate(task)

    @invalidates(keys.ALL_TASK_KEYS)
    async def update_task(self, task_id: int, task_data: TaskUpdate) -> TaskRead:
        data = _validated(task_data.model_dump(exclude_unset=True), partial=True)

        existing = await self.repository.find_by_id(task_id)
        if not existing:
            raise TaskNotFoundError(task_id)

        target = data.get("status")
        if target is not None and not can_transition(existing.status, target):
            raise InvalidTransitionError("Cannot change status of completed task")

        task = await self.repository.update(task_id, data)
        if not task:
            # deleted between the read and the write
            raise TaskNotFoundError(task_id)
        logger.info(f"Updated task {task_id}")
        return TaskRead.model_validate(task)

    @invalidates(keys.ALL_TASK_KEYS)
    async def delete_task(self, task_id: int) -> bool:
        existing = await self.repository.find_by_id(task_id)
        if not existing:
            raise TaskNotFoundError(task_id)

        if existing.status not in DELETABLE_STATUSES:
            raise InvalidTransitionError("Cannot delete task that is in progress")

        deleted = await self.repository.delete(task_id)
        logger.info(f"Deleted task {task_id}: {deleted}")
        return deleted

    @async_cached(lambda self: keys.STATS, schema=TaskStatistics, ttl=keys.STATS_TTL_SECONDS)
    async def get_statistics(self) -> TaskStatistics:
        counts = await self.repository.count_by_status()
        return build_statistics(counts)
