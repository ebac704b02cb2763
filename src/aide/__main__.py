"""Main entry point for aide - runs the functions server or a terminal command."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .services.context import AppContext
from .services.notices import NoticeBoard
from .ui.cli.app import AideCli, print_notice
from .util.config import ClientConfig


def run_server(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run the functions server.

    Args:
        host: Host to bind to
        port: Port to run on
    """
    import uvicorn
    from aide.server.main import create_app

    app = create_app()
    print(f"Starting aide functions server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


def _on_off(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("on", "yes", "true", "1"):
        return True
    if lowered in ("off", "no", "false", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aide", description="aide: your virtual assistant")
    parser.add_argument("--config", type=Path, default=None, help="Local state file (default: ~/.aide.conf)")
    parser.add_argument("--backend-url", default=None, help="Backend URL (default: $AIDE_BACKEND_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    server = sub.add_parser("server", help="Run the functions server")
    server.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    server.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    login = sub.add_parser("login", help="Sign in with e-mail and password")
    login.add_argument("email", nargs="?")
    signup = sub.add_parser("signup", help="Create an account")
    signup.add_argument("email", nargs="?")
    signup.add_argument("--username", default=None)
    sub.add_parser("logout", help="Sign out the current account")
    sub.add_parser("accounts", help="List recent accounts")
    switch = sub.add_parser("switch", help="Switch to a recent account")
    switch.add_argument("email", nargs="?")
    sub.add_parser("add-account", help="Sign in to another account, keeping the current one")

    chat = sub.add_parser("chat", help="Chat with the assistant")
    chat.add_argument("--conversation", default=None, help="Continue a stored conversation")

    tasks = sub.add_parser("tasks", help="List and manage tasks")
    tasks_sub = tasks.add_subparsers(dest="tasks_command")
    add = tasks_sub.add_parser("add", help="Add a task")
    add.add_argument("title")
    add.add_argument("--description", default=None)
    add.add_argument("--due", default=None, help="Due date (ISO 8601)")
    done = tasks_sub.add_parser("done", help="Toggle completion of a task")
    done.add_argument("task", help="List number or id prefix")
    rm = tasks_sub.add_parser("rm", help="Delete a task")
    rm.add_argument("task", help="List number or id prefix")

    conversations = sub.add_parser("conversations", help="List conversations")
    conversations_sub = conversations.add_subparsers(dest="conversations_command")
    conversations_rm = conversations_sub.add_parser("rm", help="Delete a conversation")
    conversations_rm.add_argument("conversation_id")

    settings = sub.add_parser("settings", help="Show or change settings")
    settings.add_argument("--language", default=None)
    settings.add_argument("--voice", default=None)
    settings.add_argument("--theme", default=None, choices=["light", "dark", "auto"])
    settings.add_argument("--notifications", type=_on_off, default=None, help="on or off")

    voice = sub.add_parser("voice", help="Record a voice command or list recent ones")
    voice.add_argument("command_text", nargs="?", metavar="command")

    export = sub.add_parser("export", help="Download all of your data as JSON")
    export.add_argument("--dir", default=".", help="Target directory")

    delete = sub.add_parser("delete-account", help="Delete your account and all of its data")
    delete.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    return parser


async def dispatch(cli: AideCli, args: argparse.Namespace) -> bool:
    command = args.command
    if command == "login":
        return await cli.login(args.email)
    if command == "signup":
        return await cli.signup(args.email, args.username)
    if command == "logout":
        return await cli.logout()
    if command == "accounts":
        cli.show_accounts()
        return True
    if command == "switch":
        return await cli.switch(args.email)
    if command == "add-account":
        return await cli.add_account()
    if command == "chat":
        await cli.chat(args.conversation)
        return True
    if command == "tasks":
        if args.tasks_command == "add":
            return await cli.add_task(args.title, args.description, args.due)
        if args.tasks_command == "done":
            return await cli.toggle_task(args.task)
        if args.tasks_command == "rm":
            return await cli.remove_task(args.task)
        await cli.list_tasks()
        return True
    if command == "conversations":
        if args.conversations_command == "rm":
            return await cli.delete_conversation(args.conversation_id)
        await cli.list_conversations()
        return True
    if command == "settings":
        changes = {
            key: value
            for key, value in (
                ("language", args.language),
                ("voice_type", args.voice),
                ("theme", args.theme),
                ("notifications_enabled", args.notifications),
            )
            if value is not None
        }
        ok = await cli.update_settings(**changes) if changes else True
        cli.show_settings()
        return ok
    if command == "voice":
        if args.command_text:
            return await cli.record_voice_command(args.command_text)
        await cli.list_voice_commands()
        return True
    if command == "export":
        return await cli.export(args.dir) is not None
    if command == "delete-account":
        return await cli.delete_account(assume_yes=args.yes)
    raise ValueError(f"Unknown command: {command}")


async def run_command(args: argparse.Namespace) -> int:
    config = ClientConfig.from_env(backend_url=args.backend_url, config_path=args.config)
    async with AppContext.open(config, notices=NoticeBoard(on_notice=print_notice)) as ctx:
        cli = AideCli(ctx)
        await cli.start()
        try:
            return 0 if await dispatch(cli, args) else 1
        finally:
            cli.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for aide."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "server":
            run_server(host=args.host, port=args.port)
            return 0
        return asyncio.run(run_command(args))
    except ValueError as e:
        print(f"\n❌ Error: {e}")
        return 1
    except KeyboardInterrupt:
        print()
        return 0
    except Exception as e:
        print(f"\n❌ Unexpected error: {e}")
        import traceback

        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
