"""Task CRUD query functions for Shipyard.

Provides async functions for the checklist tasks of a stage. Stage-level
side effects of task changes are applied by the lifecycle engine.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.database.models.task import Task, TaskStatus
from shipyard.errors import NotFoundError

logger = structlog.get_logger(__name__)


async def create_task(
    session: AsyncSession,
    stage_id: UUID,
    title: str,
    details: str | None = None,
    owner: str | None = None,
    required: bool = True,
    status: TaskStatus = TaskStatus.todo,
    evidence_url: str | None = None,
) -> Task:
    """Create a new task within a stage.

    Args:
        session: Active async database session.
        stage_id: UUID of the owning stage.
        title: Short task description.
        details: Optional longer description.
        owner: Free-text owner.
        required: Whether the task gates approval.
        status: Initial status.
        evidence_url: Optional proof-of-completion link.

    Returns:
        The newly created Task instance.
    """
    task = Task(
        stage_id=stage_id,
        title=title,
        details=details,
        owner=owner,
        required=required,
        status=status,
        evidence_url=evidence_url,
    )
    session.add(task)
    await session.flush()

    logger.info(
        "task_created",
        task_id=str(task.id),
        stage_id=str(stage_id),
        required=required,
        status=status.value,
    )
    return task


async def get_task(session: AsyncSession, task_id: UUID) -> Task | None:
    """Retrieve a task by ID.

    Args:
        session: Active async database session.
        task_id: UUID of the task to retrieve.

    Returns:
        The Task instance if found, None otherwise.
    """
    result = await session.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def list_tasks(session: AsyncSession, stage_ids: list[UUID]) -> list[Task]:
    """List the tasks of the given stages in creation order.

    Args:
        session: Active async database session.
        stage_ids: Stages whose tasks to include.

    Returns:
        List of Task instances.
    """
    if not stage_ids:
        return []
    stmt = (
        select(Task)
        .where(Task.stage_id.in_(stage_ids))
        .order_by(Task.created_at, Task.title)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_task(
    session: AsyncSession,
    task_id: UUID,
    **updates: Any,
) -> Task:
    """Update a task's fields.

    Args:
        session: Active async database session.
        task_id: UUID of the task to update.
        **updates: Field names and values to update.

    Returns:
        The updated Task instance.

    Raises:
        NotFoundError: If the task does not exist.
    """
    task = await get_task(session, task_id)
    if task is None:
        raise NotFoundError("task", task_id)

    for field_name, value in updates.items():
        setattr(task, field_name, value)
    await session.flush()

    logger.info("task_updated", task_id=str(task_id), fields_updated=list(updates.keys()))
    return task


async def delete_task(session: AsyncSession, task_id: UUID) -> None:
    """Delete a task.

    Args:
        session: Active async database session.
        task_id: UUID of the task to delete.

    Raises:
        NotFoundError: If the task does not exist.
    """
    result = await session.execute(delete(Task).where(Task.id == task_id))
    if result.rowcount == 0:
        raise NotFoundError("task", task_id)
    logger.info("task_deleted", task_id=str(task_id))
