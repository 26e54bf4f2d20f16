"""Command-line front end for the local start-page state and its remote sync."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import mimetypes
import sys
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from startpage.adapters.remote.client import RemoteSyncError
from startpage.config import AppConfig, load_config
from startpage.core.logging_utils import setup_json_logging
from startpage.di.container import Container
from startpage.domain.exceptions.domain_exceptions import DomainException
from startpage.domain.models.state import SourceIcon, custom_icon_from_upload, dump_shortcuts

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    import httpx

logger = logging.getLogger(__name__)

__all__ = ["main", "parse_args"]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="startpage-sync",
        description="Inspect and sync the local start-page state",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        help="Override the configured SQLite path for this run.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level for this session.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Show the session and sync timestamps.")
    for name in ("register", "login"):
        sub = commands.add_parser(name, help=f"{name.capitalize()} and pull the snapshot.")
        sub.add_argument("email")
        sub.add_argument("--password", help="Prompted for when omitted.")
    commands.add_parser("logout", help="Forget the local session.")
    commands.add_parser("pull", help="Pull the remote snapshot now.")
    commands.add_parser("push", help="Push the local state now.")
    commands.add_parser("list", help="Print the shortcuts as JSON.")

    add = commands.add_parser("add", help="Add a shortcut.")
    add.add_argument("title")
    add.add_argument("url")
    icon = add.add_mutually_exclusive_group()
    icon.add_argument("--icon-url", help="Use an icon from a favicon source URL.")
    icon.add_argument("--icon-file", type=Path, help="Upload an image (max 500 KB).")
    add.add_argument("--icon-source", default="custom-url", help="Source id for --icon-url.")
    add.add_argument("--icon-padding", action="store_true")

    remove = commands.add_parser("remove", help="Remove a shortcut by id.")
    remove.add_argument("id", type=int)

    background = commands.add_parser("set-background", help="Change the background URL.")
    background.add_argument("url")

    commands.add_parser("warm-cache", help="Cache every icon and the background.")
    return parser.parse_args(argv)


def _prepare_config(args: argparse.Namespace) -> AppConfig:
    """Load configuration, optionally applying CLI overrides."""
    try:
        cfg = load_config()
    except RuntimeError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    updates: dict[str, Any] = {}
    if args.db_path:
        updates["db_path"] = str(args.db_path.expanduser())
    if args.log_level:
        updates["log_level"] = args.log_level
    if updates:
        cfg = replace(cfg, runtime=cfg.runtime.model_copy(update=updates))
    return cfg


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _password(args: argparse.Namespace) -> str:
    return args.password if args.password is not None else getpass.getpass("Password: ")


async def _status(container: Container, args: argparse.Namespace) -> None:
    status = container.engine.status().as_dict()
    status["shortcuts"] = len(container.store.state.shortcuts)
    status["background_url"] = container.store.state.background_url
    _emit(status)


async def _register(container: Container, args: argparse.Namespace) -> None:
    session = await container.engine.register(args.email, _password(args))
    _emit({"email": session.email, "shortcuts": len(container.store.state.shortcuts)})


async def _login(container: Container, args: argparse.Namespace) -> None:
    session = await container.engine.login(args.email, _password(args))
    _emit({"email": session.email, "shortcuts": len(container.store.state.shortcuts)})


async def _logout(container: Container, args: argparse.Namespace) -> None:
    await container.engine.logout()
    _emit({"authenticated": False})


async def _pull(container: Container, args: argparse.Namespace) -> None:
    outcome = await container.engine.pull("cli")
    _emit({"outcome": outcome.value})


async def _push(container: Container, args: argparse.Namespace) -> None:
    ack = await container.engine.sync_now()
    _emit({"success": ack.success, "updated_at": ack.updated_at})


async def _list(container: Container, args: argparse.Namespace) -> None:
    _emit(dump_shortcuts(container.store.state.shortcuts))


async def _add(container: Container, args: argparse.Namespace) -> None:
    icon = None
    if args.icon_file:
        content_type = mimetypes.guess_type(args.icon_file.name)[0] or "application/octet-stream"
        icon = custom_icon_from_upload(args.icon_file.read_bytes(), content_type)
    elif args.icon_url:
        icon = SourceIcon(source_id=args.icon_source, url=args.icon_url)
    item = await container.store.add_shortcut(
        args.title, args.url, icon=icon, icon_padding=args.icon_padding
    )
    _emit(dump_shortcuts([item])[0])


async def _remove(container: Container, args: argparse.Namespace) -> None:
    await container.store.remove_shortcut(args.id)
    _emit({"removed": args.id})


async def _set_background(container: Container, args: argparse.Namespace) -> None:
    url = await container.store.set_background_url(args.url)
    _emit({"background_url": url})


async def _warm_cache(container: Container, args: argparse.Namespace) -> None:
    icon_urls = [url for item in container.store.state.shortcuts if (url := item.icon_url())]
    icons = await asyncio.gather(*(container.icon_cache.ensure(url) for url in icon_urls))
    background = await container.background_cache.ensure(container.store.state.background_url)
    _emit(
        {
            "icons_cached": sum(icons),
            "icons_skipped": len(icons) - sum(icons),
            "background_cached": background,
        }
    )


_COMMANDS: dict[str, Callable[[Container, argparse.Namespace], Awaitable[None]]] = {
    "status": _status,
    "register": _register,
    "login": _login,
    "logout": _logout,
    "pull": _pull,
    "push": _push,
    "list": _list,
    "add": _add,
    "remove": _remove,
    "set-background": _set_background,
    "warm-cache": _warm_cache,
}

# Commands that edit local state run once the startup pull has settled and wait
# for the debounced push before exiting.
_MUTATING = frozenset({"add", "remove", "set-background"})


async def run_command(
    cfg: AppConfig, args: argparse.Namespace, *, http_client: httpx.AsyncClient | None = None
) -> int:
    container = Container(cfg, http_client=http_client)
    try:
        await container.start(background=False)
        mutating = args.command in _MUTATING
        if mutating:
            await container.engine.wait_settled()
        await _COMMANDS[args.command](container, args)
        if mutating:
            await container.engine.wait_for_pushes()
    except (RemoteSyncError, DomainException, ValueError) as exc:
        logger.warning("cli_command_failed", extra={"command": args.command, "error": str(exc)})
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        await container.aclose()
    return 0


def main(argv: Sequence[str] | None = None, *, http_client: httpx.AsyncClient | None = None) -> int:
    args = parse_args(argv)
    cfg = _prepare_config(args)
    setup_json_logging(
        cfg.runtime.log_level, log_file=cfg.runtime.log_file, use_json=cfg.runtime.log_json
    )
    return asyncio.run(run_command(cfg, args, http_client=http_client))


if __name__ == "__main__":
    sys.exit(main())
