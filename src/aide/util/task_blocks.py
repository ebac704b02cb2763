"""The [TASK_CREATED]{json}[/TASK_CREATED] blocks the assistant embeds in replies."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

OPEN_MARKER = "[TASK_CREATED]"
CLOSE_MARKER = "[/TASK_CREATED]"

_BLOCK_RE = re.compile(r"\[TASK_CREATED\]([\s\S]*?)\[/TASK_CREATED\]")


@dataclass
class TaskDraft:
    """Task fields announced by the assistant."""

    title: str
    description: str | None = None
    due_date: str | None = None


def parse_task_json(raw: str) -> TaskDraft | None:
    """Parse the JSON between the markers; None if it is not a usable task."""
    try:
        data = json.loads(raw.strip())
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        return None
    return TaskDraft(
        title=title.strip(),
        description=data.get("description") or None,
        due_date=data.get("dueDate") or None,
    )


def extract_task(text: str) -> TaskDraft | None:
    """Return the first complete task block in `text`, if it parses."""
    match = _BLOCK_RE.search(text)
    if not match:
        return None
    return parse_task_json(match.group(1))


def extract_tasks(text: str) -> list[TaskDraft]:
    drafts = []
    for match in _BLOCK_RE.finditer(text):
        draft = parse_task_json(match.group(1))
        if draft:
            drafts.append(draft)
    return drafts


def strip_task_blocks(text: str, *, final: bool = True) -> str:
    """Remove task blocks from text shown to the user.

    With final=False (mid-stream), an opening marker whose closing marker has
    not arrived hides everything after it, as does a partial opening marker at
    the very end. Text without any marker is returned unchanged.
    """
    if "[" not in text:
        return text
    visible = _BLOCK_RE.sub("", text)
    if not final:
        start = visible.find(OPEN_MARKER)
        if start != -1:
            visible = visible[:start]
        else:
            for size in range(len(OPEN_MARKER) - 1, 0, -1):
                if visible.endswith(OPEN_MARKER[:size]):
                    visible = visible[:-size]
                    break
    if visible == text:
        return text
    return visible.strip()
