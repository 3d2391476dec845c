import logging
import time
from functools import wraps
from typing import Callable

from sqlalchemy import case, func
from sqlalchemy import exc as sa_exc
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.exceptions import StoreUnavailableError
from app.models import Task, TaskPriority, TaskStatus, get_utc_now

logger = logging.getLogger(__name__)

STORE_FAILURES = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,  # pool acquisition timeout
    OSError,
)

PRIORITY_RANK = case(
    (Task.priority == TaskPriority.HIGH, 1),
    (Task.priority == TaskPriority.MEDIUM, 2),
    (Task.priority == TaskPriority.LOW, 3),
    else_=4,
)


def store_call(fn: Callable):
    """Time the query and turn connectivity failures into StoreUnavailableError."""

    @wraps(fn)
    async def wrapper(self, *args, **kwargs):
        start = time.perf_counter()
        try:
            return await fn(self, *args, **kwargs)
        except STORE_FAILURES as e:
            logger.error(f"Database unavailable during {fn.__name__}: {e}")
            raise StoreUnavailableError() from e
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.debug(f"DB {fn.__name__}: {elapsed_ms:.1f}ms")

    return wrapper


class TaskRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    @store_call
    async def find_all(self) -> list[Task]:
        query = select(Task).order_by(
            PRIORITY_RANK, Task.created_at.desc(), Task.id.desc()
        )
        result = await self.db.exec(query)
        return list(result.all())

    @store_call
    async def find_by_id(self, task_id: int) -> Task | None:
        return await self.db.get(Task, task_id)

    @store_call
    async def create(self, data: dict) -> Task:
        now = get_utc_now()
        task = Task(
            title=data["title"],
            description=data.get("description") or "",
            status=data.get("status") or TaskStatus.TODO,
            priority=data.get("priority") or TaskPriority.MEDIUM,
            created_at=now,
            updated_at=now,
        )
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        return task

    @store_call
    async def update(self, task_id: int, changes: dict) -> Task | None:
        """Apply the non-null fields of ``changes``; the rest keep their value."""
        task = await self.db.get(Task, task_id)
        if not task:
            return None
        task.sqlmodel_update(
            {field: value for field, value in changes.items() if value is not None}
        )
        task.updated_at = get_utc_now()
        await self.db.commit()
        await self.db.refresh(task)
        return task

    @store_call
    async def delete(self, task_id: int) -> bool:
        task = await self.db.get(Task, task_id)
        if not task:
            return False
        await self.db.delete(task)
        await self.db.commit()
        return True

    @store_call
    async def count_by_status(self) -> dict[str, int]:
        query = select(Task.status, func.count(Task.id)).group_by(Task.status)
        result = await self.db.exec(query)

        counts = {status.value: 0 for status in TaskStatus}
        for status, count in result.all():
            counts[TaskStatus(status).value] = int(count)
        return counts
