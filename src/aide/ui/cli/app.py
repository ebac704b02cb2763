"""Simple CLI for aide - accounts, streaming chat, tasks and settings in the terminal."""

from __future__ import annotations

import asyncio
import getpass
import sys
from pathlib import Path
from typing import TextIO

from aide.services.account_registry import AccountRegistry, StoredAccount, SwitchState
from aide.services.capabilities import probe
from aide.services.chat_session import ChatMessage, ChatSession
from aide.services.context import AppContext
from aide.services.conversations import ConversationService
from aide.services.export import DataExporter
from aide.services.notices import Notice
from aide.services.settings import LANGUAGE_OPTIONS, VOICE_OPTIONS, SettingsStore
from aide.services.tasks import ReminderScheduler, Task, TaskService
from aide.services.voice import TextToSpeech, VoiceCommandLog
from aide.errors import AideError
from aide.util.task_blocks import TaskDraft

CHAT_HELP = """Commands:
  /new          start a new conversation
  /load <id>    open a stored conversation
  /list         list stored conversations
  /speak        read the last answer aloud
  /switch       switch to another recent account
  /quit         leave the chat"""


def print_notice(notice: Notice) -> None:
    """Print a notice the way toasts read in the app."""
    marker = "❌" if notice.level == "error" else "✓"
    text = f"{marker} {notice.title}"
    if notice.description:
        text += f": {notice.description}"
    print(text)


def print_header(title: str) -> None:
    print("=" * 50)
    print(f"  {title}")
    print("=" * 50)
    print()


def prompt(text: str) -> str | None:
    """Read a line; None on EOF or Ctrl-C."""
    try:
        return input(text)
    except (EOFError, KeyboardInterrupt):
        return None


def prompt_secret(text: str) -> str | None:
    try:
        return getpass.getpass(text)
    except (EOFError, KeyboardInterrupt):
        return None


def select_from_list(prompt_text: str, options: list[tuple[str, str]], default_idx: int = 0) -> str | None:
    """Simple numbered selection from a list.

    Args:
        prompt_text: The prompt to display
        options: List of (label, value) tuples
        default_idx: Default selection index

    Returns:
        Selected value or None if cancelled
    """
    if not options:
        print("No options available.")
        return None

    print(prompt_text)
    for i, (label, _) in enumerate(options):
        marker = "*" if i == default_idx else " "
        print(f"  {marker}[{i + 1}] {label}")
    print()

    while True:
        choice = prompt(f"Select [1-{len(options)}] (Enter for default, q to cancel): ")
        if choice is None or choice.strip().lower() == "q":
            return None
        choice = choice.strip()
        if choice == "":
            return options[default_idx][1]
        try:
            idx = int(choice) - 1
        except ValueError:
            print("Please enter a valid number")
            continue
        if 0 <= idx < len(options):
            return options[idx][1]
        print(f"Please enter a number between 1 and {len(options)}")


class TerminalNotifier:
    """Reminder notifications printed to the terminal."""

    def __init__(self, out: TextIO = sys.stdout):
        self._out = out

    def notify(self, title: str, body: str) -> None:
        self._out.write(f"\n🔔 {title}: {body}\n")
        self._out.flush()


class StreamPrinter:
    """Writes an assistant message to the terminal as its content grows."""

    def __init__(self, out: TextIO = sys.stdout):
        self._out = out
        self._message: ChatMessage | None = None
        self._printed = ""

    def __call__(self, message: ChatMessage) -> None:
        if message.role != "assistant":
            return
        if message is not self._message:
            self._message = message
            self._printed = ""
            self._out.write("aide> ")
        # Content only shrinks when a task block closes; the hidden part was never printed.
        if message.content.startswith(self._printed):
            self._out.write(message.content[len(self._printed):])
            self._printed = message.content
            self._out.flush()

    def finish(self) -> None:
        if self._message is not None:
            self._out.write("\n")
            self._out.flush()
        self._message = None
        self._printed = ""


def _resolve_task(tasks: list[Task], ref: str) -> Task | None:
    """Find a task by its 1-based list position or an id prefix."""
    if ref.isdigit() and 0 < int(ref) <= len(tasks):
        return tasks[int(ref) - 1]
    matches = [t for t in tasks if t.id.startswith(ref)]
    return matches[0] if len(matches) == 1 else None


class AideCli:
    """Wires the services of one application context to terminal commands."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.settings = SettingsStore(ctx)
        self.registry = AccountRegistry(ctx, on_reload=self.settings.load)
        self.reminders = ReminderScheduler(probe("Notifications", TerminalNotifier))
        self.tasks = TaskService(ctx, reminders=self.reminders)
        self.conversations = ConversationService(ctx)
        self.voice_log = VoiceCommandLog(ctx)
        # No audio output device is driven from the terminal.
        self.speech = TextToSpeech(ctx, probe("Audio playback", None), lambda: self.settings.voice_id)

    async def start(self) -> None:
        self.registry.load()
        self.registry.subscribe()
        self.settings.subscribe()
        await self.settings.load()

    def close(self) -> None:
        self.registry.close()
        self.settings.close()
        self.reminders.cancel_all()

    # Accounts
    async def login(self, email: str | None = None) -> bool:
        email = email or self.registry.consume_pending_switch() or prompt("E-mail: ")
        if not email:
            return False
        password = prompt_secret(f"Password for {email}: ")
        if not password:
            return False
        return await self.registry.sign_in(email.strip(), password) is not None

    async def signup(self, email: str | None = None, username: str | None = None) -> bool:
        email = email or prompt("E-mail: ")
        if not email:
            return False
        if username is None:
            username = (prompt("Username (optional): ") or "").strip() or None
        password = prompt_secret("Password: ")
        if not password:
            return False
        account = await self.registry.sign_up(email.strip(), password, username)
        return account is not None

    async def logout(self) -> bool:
        if self.ctx.auth.current_session is None:
            print("Not signed in.")
            return False
        await self.registry.sign_out_current()
        return True

    def show_accounts(self) -> None:
        current = self.registry.current_account()
        accounts = self.registry.accounts
        if not accounts:
            print("No recent accounts.")
            return
        for account in accounts:
            marker = "*" if current is not None and account.email == current.email else " "
            quick = "" if account.can_quick_switch else "  (password required)"
            print(f" {marker} {account.display_name} <{account.email}>  {account.last_used_at:%Y-%m-%d %H:%M}{quick}")

    async def switch(self, email: str | None = None) -> bool:
        target: StoredAccount | None
        if email:
            target = self.registry.find(email)
            if target is None:
                self.ctx.notices.error("Unknown account", f"{email} is not in the recent accounts list.")
                return False
        else:
            options = [(f"{a.display_name} <{a.email}>", a.email) for a in self.registry.other_accounts()]
            chosen = select_from_list("Switch to:", options)
            if chosen is None:
                return False
            target = self.registry.find(chosen)
            if target is None:
                return False

        result = await self.registry.switch_to(target)
        if result.state is SwitchState.AWAITING_PASSWORD:
            return await self.login(self.registry.consume_pending_switch())
        return True

    async def add_account(self) -> bool:
        await self.registry.add_account()
        return await self.login()

    async def delete_account(self, assume_yes: bool = False) -> bool:
        if not assume_yes:
            answer = prompt("Delete your account and all of its data? [y/N]: ")
            if (answer or "").strip().lower() != "y":
                return False
        return await self.registry.delete_account()

    # Chat
    async def chat(self, conversation_id: str | None = None) -> None:
        printer = StreamPrinter()
        session = ChatSession(self.ctx, on_update=printer, on_task_created=self._remind_for_draft)
        print_header("AIDE - chat (/help for commands)")
        if conversation_id:
            await self._show_conversation(session, conversation_id)
        self.reminders.sync(await self.tasks.list())

        try:
            while True:
                line = await asyncio.to_thread(prompt, "you> ")
                if line is None:
                    break
                line = line.strip()
                if not line:
                    continue
                if line in ("/quit", "/exit"):
                    break
                if line == "/help":
                    print(CHAT_HELP)
                elif line == "/new":
                    session.new_conversation()
                    print("Started a new conversation.")
                elif line.startswith("/load"):
                    ref = line[len("/load"):].strip()
                    if ref:
                        await self._show_conversation(session, ref)
                elif line == "/list":
                    await self.list_conversations()
                elif line == "/speak":
                    await self._speak_last(session)
                elif line == "/switch":
                    if await self.switch():
                        session.new_conversation()
                else:
                    await session.send(line)
                    printer.finish()
        finally:
            await session.wait_for_background()

    async def _show_conversation(self, session: ChatSession, conversation_id: str) -> None:
        for message in await session.load_conversation(conversation_id):
            who = "you" if message.role == "user" else "aide"
            print(f"{who}> {message.content}")

    async def _speak_last(self, session: ChatSession) -> None:
        for index in range(len(session.messages) - 1, -1, -1):
            message = session.messages[index]
            if message.role == "assistant" and message.content:
                await self.speech.speak(message.content, f"{session.conversation_id}:{index}")
                return
        print("Nothing to read yet.")

    def _remind_for_draft(self, draft: TaskDraft) -> None:
        task = Task(id=f"draft:{draft.title}", title=draft.title, description=draft.description, due_date=draft.due_date)
        self.reminders.schedule(task)

    # Conversations
    async def list_conversations(self) -> None:
        conversations = await self.conversations.list()
        if not conversations:
            print("No conversations yet.")
        for conversation in conversations:
            print(f"  {conversation.id}  {conversation.title}")

    async def delete_conversation(self, conversation_id: str) -> bool:
        return await self.conversations.delete(conversation_id)

    # Tasks
    async def list_tasks(self) -> list[Task]:
        tasks = await self.tasks.list()
        if not tasks:
            print("No tasks yet.")
        for i, task in enumerate(tasks, 1):
            box = "[x]" if task.completed else "[ ]"
            due = f"  (due {task.due:%Y-%m-%d %H:%M})" if task.due else ""
            print(f"  {i:>2}. {box} {task.title}{due}")
            if task.description:
                print(f"         {task.description}")
        return tasks

    async def add_task(self, title: str, description: str | None = None, due: str | None = None) -> bool:
        return await self.tasks.add(title, description, due) is not None

    async def toggle_task(self, ref: str) -> bool:
        task = _resolve_task(await self.tasks.list(), ref)
        if task is None:
            self.ctx.notices.error("Unknown task", ref)
            return False
        return await self.tasks.toggle_complete(task)

    async def remove_task(self, ref: str) -> bool:
        task = _resolve_task(await self.tasks.list(), ref)
        if task is None:
            self.ctx.notices.error("Unknown task", ref)
            return False
        return await self.tasks.delete(task.id)

    # Settings
    def show_settings(self) -> None:
        s = self.settings.settings
        voice_label = VOICE_OPTIONS.get(s.voice_type, ("?", ""))[0]
        print(f"  Language:      {LANGUAGE_OPTIONS.get(s.language, s.language)} ({s.language})")
        print(f"  Voice:         {voice_label}")
        print(f"  Notifications: {'on' if s.notifications_enabled else 'off'}")
        print(f"  Theme:         {s.theme}")

    async def update_settings(self, **changes) -> bool:
        try:
            await self.settings.update(**changes)
        except ValueError as e:
            self.ctx.notices.error("Invalid setting", str(e))
            return False
        return True

    # Voice
    async def record_voice_command(self, command: str) -> bool:
        return await self.voice_log.record(command) is not None

    async def list_voice_commands(self) -> None:
        for command in await self.voice_log.recent():
            print(f"  {command.command}")
            if command.response:
                print(f"      {command.response}")

    # Export
    async def export(self, directory: str = ".") -> Path | None:
        try:
            path = await DataExporter(self.ctx).export(directory)
        except AideError as e:
            self.ctx.notices.error("Export failed", str(e))
            return None
        self.ctx.notices.info("Data exported", str(path))
        return path
