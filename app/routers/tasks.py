from fastapi import APIRouter, status

from app.core.exceptions import TaskNotFoundError
from app.deps import TaskServiceDep
from app.models import TaskCreate, TaskUpdate

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("")
async def get_tasks(service: TaskServiceDep):
    """List every task, highest priority and newest first"""
    tasks = await service.list_tasks()
    return {"success": True, "data": tasks, "count": len(tasks)}


@router.get("/stats")
async def get_statistics(service: TaskServiceDep):
    """Task counts per status and completion rate"""
    return {"success": True, "data": await service.get_statistics()}


@router.get("/{task_id}")
async def get_task(task_id: int, service: TaskServiceDep):
    """Get a specific task by ID"""
    return {"success": True, "data": await service.get_task(task_id)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(task_data: TaskCreate, service: TaskServiceDep):
    """Create a new task"""
    return {"success": True, "data": await service.create_task(task_data)}


@router.api_route("/{task_id}", methods=["PUT", "PATCH"])
async def update_task(task_id: int, task_data: TaskUpdate, service: TaskServiceDep):
    return {"success": True, "data": await service.update_task(task_id, task_data)}


@router.delete("/{task_id}")
async def delete_task(task_id: int, service: TaskServiceDep):
    """Delete a task; tasks in progress are refused"""
    if not await service.delete_task(task_id):
        raise TaskNotFoundError(task_id)
    return {"success": True, "message": "Task deleted successfully"}
