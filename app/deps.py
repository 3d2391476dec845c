"""Dependency injection helpers for FastAPI."""

from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from app.core.context import AppContext
from app.database import get_db
from app.repositories.task_repository import TaskRepository
from app.services.task_service import TaskService


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_task_service(
    context: Annotated[AppContext, Depends(get_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TaskService:
    return TaskService(TaskRepository(db), context.cache)


ContextDep = Annotated[AppContext, Depends(get_context)]
TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
