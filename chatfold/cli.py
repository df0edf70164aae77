"""Command line interface for inspecting and editing persisted Chatfold data."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any

from chatfold.config.manager import ConfigManager
from chatfold.identity.namespace import DEFAULT_NAMESPACE, sanitize_namespace
from chatfold.identity.normalizer import normalize_id
from chatfold.storage.association_store import AssociationStore
from chatfold.storage.migration import migrate_legacy_keys
from chatfold.utils.exceptions import ChatfoldError

StoreOperation = Callable[[AssociationStore, argparse.Namespace], Awaitable[Any]]


def _resolve_database_url(override: str | None) -> str:
    if override:
        return override
    settings = ConfigManager.get_instance().get_settings()
    return settings.storage.database_url


def _load_store_for_cli(database_url: str | None = None) -> AssociationStore:
    """Build an unloaded :class:`AssociationStore` on the persistent backend."""

    from chatfold.storage.base import NamespacedStorage
    from chatfold.storage.sqlalchemy_backend import SQLAlchemyStorageBackend

    manager = ConfigManager.get_instance()
    try:
        manager.auto_load()
        manager.setup_logging()
    except ChatfoldError as exc:
        print(f"Warning: {exc}", file=sys.stderr)

    settings = manager.get_settings()
    backend = SQLAlchemyStorageBackend(
        _resolve_database_url(database_url),
        quota_bytes=settings.storage.quota_bytes,
        item_quota_bytes=settings.storage.item_quota_bytes,
    )
    return AssociationStore(
        NamespacedStorage(backend, settings.storage.key_prefix),
        extra_placeholder_titles=settings.identity.extra_placeholder_titles,
        default_namespace=settings.identity.default_namespace,
    )


def _run_store_command(
    args: argparse.Namespace, operation: StoreOperation, *, load: bool = True
) -> int:
    try:
        store = _load_store_for_cli(args.database_url)
    except Exception as exc:  # pragma: no cover
        print(f"Failed to load Chatfold configuration: {exc}", file=sys.stderr)
        return 1

    namespace = sanitize_namespace(args.namespace)

    async def _run() -> Any:
        if load:
            await store.load(namespace)
        return await operation(store, args)

    try:
        payload = asyncio.run(_run())
    except ChatfoldError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.storage.backend.close()

    if payload is not None:
        print(json.dumps(payload, indent=2))
    return 0


async def _projects_list(store: AssociationStore, args: argparse.Namespace) -> Any:
    return {
        "namespace": store.namespace,
        "projects": [project.to_dict() for project in store.list_projects()],
    }


async def _projects_create(store: AssociationStore, args: argparse.Namespace) -> Any:
    project = await store.create_project(args.name)
    return {"project": project.to_dict()}


async def _projects_rename(store: AssociationStore, args: argparse.Namespace) -> Any:
    project = await store.rename_project(args.project_id, args.name)
    return {"project": project.to_dict()}


async def _projects_delete(store: AssociationStore, args: argparse.Namespace) -> Any:
    unfiled = await store.delete_project(args.project_id)
    return {"deleted": args.project_id, "unfiled": unfiled}


async def _projects_link(store: AssociationStore, args: argparse.Namespace) -> Any:
    project = await store.link_project_to_context(
        args.project_id, args.context_id, args.context_name
    )
    return {"project": project.to_dict()}


async def _projects_unlink(store: AssociationStore, args: argparse.Namespace) -> Any:
    project = await store.unlink_project(args.project_id)
    return {"project": project.to_dict()}


def _chat_row(chat_id: str, association: Any) -> dict[str, Any]:
    return {"id": chat_id, **association.to_dict()}


async def _chats_list(store: AssociationStore, args: argparse.Namespace) -> Any:
    if args.project_id:
        rows = [
            _chat_row(chat_id, association)
            for chat_id, association in store.list_by_project(args.project_id)
        ]
    else:
        rows = [
            _chat_row(chat_id, association)
            for chat_id, association in sorted(store.associations().items())
        ]
    return {"namespace": store.namespace, "chats": rows}


async def _chats_file(store: AssociationStore, args: argparse.Namespace) -> Any:
    association = await store.add(args.chat_id, args.project_id, args.title)
    return {"chat": _chat_row(normalize_id(args.chat_id), association)}


async def _chats_unfile(store: AssociationStore, args: argparse.Namespace) -> Any:
    removed = await store.remove(args.chat_id)
    return {"chat_id": args.chat_id, "removed": removed}


async def _migrate(store: AssociationStore, args: argparse.Namespace) -> Any:
    return await migrate_legacy_keys(
        store.storage, sanitize_namespace(args.namespace)
    )


async def _export(store: AssociationStore, args: argparse.Namespace) -> Any:
    payload = {
        "namespace": store.namespace,
        "projects": [project.to_dict() for project in store.list_projects()],
        "chat_mappings": {
            chat_id: association.to_dict()
            for chat_id, association in sorted(store.associations().items())
        },
    }
    if args.output and args.output != "-":
        destination = Path(args.output)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"Exported {len(payload['chat_mappings'])} chats to {destination}")
        return None
    return payload


def _handle(operation: StoreOperation, *, load: bool = True):
    def handler(args: argparse.Namespace) -> int:
        return _run_store_command(args, operation, load=load)

    handler.__name__ = f"_handle{operation.__name__}"
    return handler


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatfold",
        description="Inspect and edit Chatfold projects and filed conversations.",
    )
    parser.add_argument(
        "--namespace",
        default=DEFAULT_NAMESPACE,
        help="Identity namespace to operate on (default: %(default)s).",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override the configured storage database URL.",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    projects = subparsers.add_parser("projects", help="Manage projects.")
    projects_sub = projects.add_subparsers(dest="projects_command")
    projects_sub.required = True

    projects_list = projects_sub.add_parser("list", help="List projects in order.")
    projects_list.set_defaults(func=_handle(_projects_list))

    projects_create = projects_sub.add_parser("create", help="Create a project.")
    projects_create.add_argument("name", help="Display name of the project.")
    projects_create.set_defaults(func=_handle(_projects_create))

    projects_rename = projects_sub.add_parser("rename", help="Rename a project.")
    projects_rename.add_argument("project_id")
    projects_rename.add_argument("name")
    projects_rename.set_defaults(func=_handle(_projects_rename))

    projects_delete = projects_sub.add_parser(
        "delete", help="Delete a project and unfile its conversations."
    )
    projects_delete.add_argument("project_id")
    projects_delete.set_defaults(func=_handle(_projects_delete))

    projects_link = projects_sub.add_parser(
        "link", help="Link a project to a Gem so new chats are filed automatically."
    )
    projects_link.add_argument("project_id")
    projects_link.add_argument("context_id", help="Gem identifier.")
    projects_link.add_argument("--context-name", default=None, help="Gem display name.")
    projects_link.set_defaults(func=_handle(_projects_link))

    projects_unlink = projects_sub.add_parser("unlink", help="Remove a Gem link.")
    projects_unlink.add_argument("project_id")
    projects_unlink.set_defaults(func=_handle(_projects_unlink))

    chats = subparsers.add_parser("chats", help="Manage filed conversations.")
    chats_sub = chats.add_subparsers(dest="chats_command")
    chats_sub.required = True

    chats_list = chats_sub.add_parser("list", help="List filed conversations.")
    chats_list.add_argument("--project-id", default=None, help="Only this project.")
    chats_list.set_defaults(func=_handle(_chats_list))

    chats_file = chats_sub.add_parser("file", help="File a conversation into a project.")
    chats_file.add_argument("chat_id")
    chats_file.add_argument("project_id")
    chats_file.add_argument("--title", required=True, help="Conversation title.")
    chats_file.set_defaults(func=_handle(_chats_file))

    chats_unfile = chats_sub.add_parser("unfile", help="Remove a conversation's filing.")
    chats_unfile.add_argument("chat_id")
    chats_unfile.set_defaults(func=_handle(_chats_unfile))

    migrate = subparsers.add_parser(
        "migrate", help="Move legacy unscoped data into --namespace."
    )
    migrate.set_defaults(func=_handle(_migrate, load=False))

    export = subparsers.add_parser("export", help="Dump a namespace as JSON.")
    export.add_argument(
        "--output", default="-", help="Destination path or '-' for stdout."
    )
    export.set_defaults(func=_handle(_export))

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == "__main__":  # pragma: no cover - invoked manually
    sys.exit(main())
