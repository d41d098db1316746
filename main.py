"""Command-line interface for the authentication service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Callable, Sequence

from authservice.config import AuthSettings, load_settings
from authservice.database import (
    MIN_PASSWORD_LENGTH,
    CredentialStore,
    DuplicateEmailError,
    UserValidationError,
)

logger = logging.getLogger("authservice.main")

_KNOWN_COMMANDS = {"serve", "init-db", "create-user", "delete-user"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Authentication service utilities")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to a YAML configuration file (defaults to AUTH_CONFIG_PATH)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the credential database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP authentication service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: AUTH_HOST or 0.0.0.0)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listen port (default: AUTH_PORT or 8080)",
    )

    create_parser = subparsers.add_parser("create-user", help="Create a user account")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address for login")

    delete_parser = subparsers.add_parser("delete-user", help="Remove a user account by email")
    delete_parser.add_argument("email", help="Email address of the account to remove")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    # Options placed before the subcommand still belong to the top-level parser.
    leading: list[str] = []
    while args_list:
        if args_list[0].startswith("--config="):
            leading.append(args_list.pop(0))
        elif args_list[0] == "--config" and len(args_list) >= 2:
            leading.extend(args_list[:2])
            args_list = args_list[2:]
        else:
            break

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*leading, *args_list])
        if first not in _KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*leading, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*leading, *args_list])


def _open_store(settings: AuthSettings) -> CredentialStore:
    store = CredentialStore(settings.database_path, password_rounds=settings.password_rounds)
    store.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return store


def _prompt_for_password(prompt: Callable[[str], str] = getpass) -> str:
    for _ in range(3):
        password = prompt("Password: ")
        confirm = prompt("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < MIN_PASSWORD_LENGTH:
            print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def _create_user(store: CredentialStore, name: str, email: str, password: str) -> int:
    try:
        user = store.create_user(email, name, password)
    except UserValidationError as exc:
        for message in exc.messages:
            print(f"Error: {message}", file=sys.stderr)
        return 1
    except DuplicateEmailError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}>")
    return 0


def _delete_user(store: CredentialStore, email: str) -> int:
    user = store.get_user_by_email(email)
    if user is None or not store.delete_user(user.id):
        print(f"Error: no user registered with {email}", file=sys.stderr)
        return 1
    print(f"Deleted user {user.id} <{user.email}>")
    return 0


def _serve(settings: AuthSettings, *, host: str | None, port: int | None) -> None:
    from authservice.application import create_application
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting authentication API on http://%s:%s", bind_host, bind_port)

    app = create_application(settings=settings)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level="info")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = load_settings(Path(args.config_path) if args.config_path else None)

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
        return 0

    store = _open_store(settings)
    if args.command == "init-db":
        print("Database initialisation complete.")
        return 0
    if args.command == "create-user":
        return _create_user(store, args.name, args.email, _prompt_for_password())
    if args.command == "delete-user":
        return _delete_user(store, args.email)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
