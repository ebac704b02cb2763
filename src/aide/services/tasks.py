"""Tasks of the signed-in user and their due-time reminders."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from aide.errors import AideError
from aide.services.capabilities import Capability, Notifier, Supported
from aide.services.context import AppContext

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_BODY = "You have a task due!"


def parse_due_date(value: str | None) -> datetime | None:
    """Parse an ISO-8601 due date; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable due date %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Task:
    id: str
    title: str
    description: str | None = None
    due_date: str | None = None
    completed: bool = False
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Task":
        return cls(
            id=row["id"],
            title=row.get("title") or "",
            description=row.get("description"),
            due_date=row.get("due_date"),
            completed=bool(row.get("completed")),
            created_at=row.get("created_at"),
        )

    @property
    def due(self) -> datetime | None:
        return parse_due_date(self.due_date)


class TaskService:
    """CRUD over the `tasks` table; failures are reported as notices."""

    def __init__(self, ctx: AppContext, reminders: "ReminderScheduler | None" = None):
        self.ctx = ctx
        self.reminders = reminders

    async def list(self) -> list[Task]:
        """Tasks of the current user, newest first."""
        session = await self.ctx.auth.get_session()
        if session is None:
            return []
        try:
            rows = await self.ctx.data.select(
                "tasks", filters={"user_id": session.user.id}, order="created_at", ascending=False
            )
        except AideError as e:
            logger.warning("Listing tasks failed: %s", e)
            self.ctx.notices.error("Error", "Failed to load tasks.")
            return []
        return [Task.from_row(row) for row in rows]

    async def add(self, title: str, description: str | None = None, due_date: str | None = None) -> Task | None:
        session = await self.ctx.auth.get_session()
        if session is None:
            self.ctx.notices.error("Not signed in", "Sign in to manage your tasks.")
            return None
        title = title.strip()
        if not title:
            self.ctx.notices.error("Error", "A task needs a title.")
            return None
        try:
            rows = await self.ctx.data.insert(
                "tasks",
                {
                    "user_id": session.user.id,
                    "title": title,
                    "description": description or None,
                    "due_date": due_date or None,
                },
            )
        except AideError as e:
            logger.warning("Adding task failed: %s", e)
            self.ctx.notices.error("Error", str(e))
            return None
        self.ctx.notices.info("Task added", "Your task has been created successfully.")
        task = Task.from_row(rows[0]) if rows else None
        if task is not None and self.reminders is not None:
            self.reminders.schedule(task)
        return task

    async def toggle_complete(self, task: Task) -> bool:
        try:
            await self.ctx.data.update("tasks", {"completed": not task.completed}, filters={"id": task.id})
        except AideError as e:
            logger.warning("Updating task %s failed: %s", task.id, e)
            self.ctx.notices.error("Error", "Failed to update task")
            return False
        task.completed = not task.completed
        if self.reminders is not None:
            if task.completed:
                self.reminders.cancel(task.id)
            else:
                self.reminders.schedule(task)
        return True

    async def delete(self, task_id: str) -> bool:
        try:
            await self.ctx.data.delete("tasks", filters={"id": task_id})
        except AideError as e:
            logger.warning("Deleting task %s failed: %s", task_id, e)
            self.ctx.notices.error("Error", "Failed to delete task")
            return False
        if self.reminders is not None:
            self.reminders.cancel(task_id)
        self.ctx.notices.info("Task deleted", "Your task has been removed.")
        return True


class ReminderScheduler:
    """Fires a notification when a task falls due.

    Timers live on the running event loop; nothing is persisted, so reminders
    only fire while the process is alive.
    """

    def __init__(
        self,
        notifier: Capability[Notifier],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.notifier = notifier
        self._clock = clock
        self._handles: dict[str, asyncio.TimerHandle] = {}

    @property
    def pending(self) -> list[str]:
        return list(self._handles)

    def schedule(self, task: Task) -> bool:
        """Schedule a reminder; past or missing due dates are not scheduled."""
        if not isinstance(self.notifier, Supported):
            return False
        due = task.due
        if due is None or task.completed:
            return False
        delay = (due - self._clock()).total_seconds()
        if delay <= 0:
            return False
        self.cancel(task.id)
        loop = asyncio.get_running_loop()
        self._handles[task.id] = loop.call_later(delay, self._fire, task.id, task.title, task.description)
        logger.debug("Reminder for task %s in %.0fs", task.id, delay)
        return True

    def sync(self, tasks: list[Task]) -> int:
        """Replace all timers with those of `tasks`; returns how many were scheduled."""
        self.cancel_all()
        return sum(1 for task in tasks if self.schedule(task))

    def cancel(self, task_id: str) -> None:
        handle = self._handles.pop(task_id, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def _fire(self, task_id: str, title: str, description: str | None) -> None:
        self._handles.pop(task_id, None)
        if not isinstance(self.notifier, Supported):
            return
        try:
            self.notifier.handle.notify("Reminder: " + title, description or DEFAULT_REMINDER_BODY)
        except Exception:
            logger.warning("Reminder notification for %s failed", task_id, exc_info=True)
