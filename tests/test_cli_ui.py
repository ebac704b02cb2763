"""Tests for the terminal front end."""

import io

import pytest

from aide.services.chat_session import ChatMessage
from aide.services.notices import Notice
from aide.services.tasks import Task
from aide.ui.cli.app import AideCli, StreamPrinter, _resolve_task, print_notice, select_from_list
from aide.util.config_manager import LEGACY_ACCOUNTS_KEY

from fakes import sse


class TestStreamPrinter:
    def test_prints_growing_suffix(self):
        out = io.StringIO()
        printer = StreamPrinter(out)
        message = ChatMessage("assistant", "")
        printer(ChatMessage("user", "ignored"))
        for content in ("Hel", "Hello", "Hello there"):
            message.content = content
            printer(message)
        printer.finish()
        assert out.getvalue() == "aide> Hello there\n"

    def test_hidden_task_block_is_never_printed(self):
        out = io.StringIO()
        printer = StreamPrinter(out)
        message = ChatMessage("assistant", "Okay.")
        printer(message)
        message.content = "Okay.  Done."
        printer(message)
        assert "TASK" not in out.getvalue()
        assert out.getvalue() == "aide> Okay.  Done."


class TestHelpers:
    def test_print_notice(self, capsys):
        print_notice(Notice("Task added", "Your task has been created successfully."))
        print_notice(Notice("Error", level="error"))
        assert capsys.readouterr().out.splitlines() == [
            "✓ Task added: Your task has been created successfully.",
            "❌ Error",
        ]

    def test_select_from_list(self, monkeypatch, capsys):
        answers = iter(["7", "x", "2"])
        monkeypatch.setattr("builtins.input", lambda _prompt="": next(answers))
        assert select_from_list("Pick:", [("A", "a"), ("B", "b")]) == "b"
        assert "between 1 and 2" in capsys.readouterr().out

    def test_select_from_list_default_and_cancel(self, monkeypatch):
        monkeypatch.setattr("builtins.input", lambda _prompt="": "")
        assert select_from_list("Pick:", [("A", "a"), ("B", "b")], default_idx=1) == "b"
        monkeypatch.setattr("builtins.input", lambda _prompt="": "q")
        assert select_from_list("Pick:", [("A", "a")]) is None

    def test_resolve_task(self):
        tasks = [Task(id="abc1", title="one"), Task(id="abd2", title="two")]
        assert _resolve_task(tasks, "2").title == "two"
        assert _resolve_task(tasks, "abc").title == "one"
        assert _resolve_task(tasks, "ab") is None
        assert _resolve_task(tasks, "9") is None


class TestAideCli:
    """Commands against the fake backend with prompts patched."""

    @pytest.fixture
    def cli(self, ctx, monkeypatch):
        monkeypatch.setattr("aide.ui.cli.app.getpass.getpass", lambda _prompt="": "secret")
        return AideCli(ctx)

    @pytest.mark.asyncio
    async def test_login_and_accounts(self, cli, backend, capsys):
        backend.add_user("ada@example.com", username="Ada")
        await cli.start()
        assert await cli.login("ada@example.com")
        cli.show_accounts()
        out = capsys.readouterr().out
        assert "* Ada <ada@example.com>" in out
        cli.close()

    @pytest.mark.asyncio
    async def test_switch_to_legacy_account_prompts_password(self, cli, ctx, backend):
        ctx.state.set_value(LEGACY_ACCOUNTS_KEY, [{"email": "old@example.com", "username": "Old"}])
        backend.add_user("old@example.com")
        await cli.start()

        assert await cli.switch("old@example.com")

        assert ctx.auth.current_session.user.email == "old@example.com"
        assert cli.registry.find("old@example.com").can_quick_switch
        assert ctx.state.get_pending_switch() is None
        cli.close()

    @pytest.mark.asyncio
    async def test_switch_unknown_account(self, cli, ctx):
        await cli.start()
        assert not await cli.switch("nobody@example.com")
        assert ctx.notices.last.title == "Unknown account"

    @pytest.mark.asyncio
    async def test_task_commands(self, cli, backend, capsys):
        backend.add_user("ada@example.com")
        await cli.start()
        await cli.login("ada@example.com")

        assert await cli.add_task("Buy milk")
        assert await cli.toggle_task("1")
        await cli.list_tasks()
        assert "[x] Buy milk" in capsys.readouterr().out
        assert await cli.remove_task("1")
        assert backend.rows("tasks") == []
        assert not await cli.remove_task("1")
        cli.close()

    @pytest.mark.asyncio
    async def test_invalid_setting_is_reported(self, cli, ctx, backend):
        backend.add_user("ada@example.com")
        await cli.start()
        await cli.login("ada@example.com")
        assert not await cli.update_settings(theme="neon")
        assert ctx.notices.last.title == "Invalid setting"
        cli.close()

    @pytest.mark.asyncio
    async def test_chat_loop(self, cli, backend, monkeypatch, capsys):
        backend.add_user("ada@example.com")
        backend.chat_responses.append((200, sse("Hi ", "there!")))
        await cli.start()
        await cli.login("ada@example.com")
        lines = iter(["Hello", "/new", "/quit"])
        monkeypatch.setattr("builtins.input", lambda _prompt="": next(lines))

        await cli.chat()

        out = capsys.readouterr().out
        assert "aide> Hi there!" in out
        assert "Started a new conversation." in out
        assert [m["content"] for m in backend.rows("messages")] == ["Hello", "Hi there!"]
        cli.close()

    @pytest.mark.asyncio
    async def test_export_signed_out(self, cli, ctx, tmp_path):
        await cli.start()
        assert await cli.export(str(tmp_path)) is None
        assert ctx.notices.last.title == "Export failed"
