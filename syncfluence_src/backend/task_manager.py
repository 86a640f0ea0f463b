from typing import Optional, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db import Task, User
from errors import NotFound


def resolve_assignee(name: Optional[str], members: Iterable[User]) -> Optional[User]:
    """Match a model-supplied assignee name to a room member.

    Case-insensitive exact match on the full display name wins. Failing that,
    a name equal to exactly one member's first name resolves to that member.
    Anything else stays unresolved.
    """
    if not name or not name.strip():
        return None
    wanted = name.strip().lower()
    members = list(members)

    for m in members:
        if (m.display_name or "").strip().lower() == wanted:
            return m

    by_first_name = [
        m for m in members
        if (m.display_name or "").split() and m.display_name.split()[0].lower() == wanted
    ]
    if len(by_first_name) == 1:
        return by_first_name[0]
    return None


async def list_tasks(session: AsyncSession, room_id: str) -> list[Task]:
    res = await session.execute(select(Task).where(Task.room_id == room_id).order_by(Task.id))
    return list(res.scalars().all())


async def merge_extracted_tasks(session: AsyncSession, room_id: str, extracted: list, members: list[User]) -> list[Task]:
    """Store extracted tasks whose description is not already in the room.

    Descriptions are compared by exact string equality, so rephrasings of the
    same task are stored separately. Returns the newly created tasks.
    """
    existing = {t.task for t in await list_tasks(session, room_id)}
    created = []
    for item in extracted:
        description = item.task
        if description in existing:
            print(f"   ↩️  Skipping known task: {description}")
            continue
        assignee = resolve_assignee(item.assignee, members)
        if item.assignee and not assignee:
            print(f"   ⚠️  Could not resolve assignee '{item.assignee}' for: {description}")
        task = Task(
            room_id=room_id,
            task=description,
            assignee_id=assignee.uid if assignee else None,
            completed=False,
        )
        session.add(task)
        existing.add(description)
        created.append(task)

    if created:
        await session.commit()
        for task in created:
            await session.refresh(task)
        print(f"📋 Added {len(created)} task(s) to room {room_id}")
    return created


async def set_task_completed(session: AsyncSession, room_id: str, task_id: int, completed: bool) -> Task:
    task = await session.get(Task, task_id)
    if not task or task.room_id != room_id:
        raise NotFound("Task not found")
    task.completed = completed
    await session.commit()
    await session.refresh(task)
    return task
