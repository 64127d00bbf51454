#!/usr/bin/env python3
"""
kvauth -- admin CLI for users and roles held in the key-value store.

Usage:
  python main.py create-user alice --field email=alice@example.com
  python main.py set-password alice            # prompts for the password
  python main.py show-user alice
  python main.py check alice                   # prompts, then reports allow/deny
  python main.py add-role admin
  python main.py grant-role alice admin
  python main.py revoke-role alice admin
  python main.py roles alice
  python main.py --connection replica show-user alice

Environment variables:
  STORE_URL, STORE_CONNECTIONS, AUTH_PROVIDER__*   see core/config.py

Exit status: 0 on success, 1 when a user/role is not found or a password is
rejected, 2 on usage errors.
"""

import argparse
import getpass
import json
import logging
import sys
from typing import Optional

from auth.passwords import BcryptHasher
from auth.provider import KVStoreProvider
from core.config import get_settings
from store.connections import close_all

logger = logging.getLogger("kvauth.cli")


def _parse_fields(pairs: list[str]) -> dict:
    """Turn ["k=v", ...] into a dict. Values that parse as JSON keep their type."""
    fields: dict = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        try:
            fields[key] = json.loads(raw)
        except json.JSONDecodeError:
            fields[key] = raw
    return fields


def _read_password(args: argparse.Namespace, confirm: bool) -> str:
    if args.password is not None:
        return args.password
    password = getpass.getpass("Password: ")
    if confirm and getpass.getpass("Repeat password: ") != password:
        raise ValueError("Passwords do not match")
    return password


def _print_user(provider: KVStoreProvider, user: dict) -> None:
    shown = {k: v for k, v in user.items() if k != provider.config.users_password_key}
    print(json.dumps(shown, indent=2, sort_keys=True))


# ---------------------------------------------------------------------------
# Role administration
#
# The provider only reads roles; these helpers write the roles and user_roles
# collections using the same configured names.
# ---------------------------------------------------------------------------


def _find_role(provider: KVStoreProvider, role: str) -> Optional[dict]:
    cfg = provider.config
    return provider.store.quick_select(cfg.roles_path, {cfg.roles_role_key: role})


def add_role(provider: KVStoreProvider, role: str) -> dict:
    existing = _find_role(provider, role)
    if existing is not None:
        return existing
    cfg = provider.config
    return provider.store.quick_insert(cfg.roles_path, {cfg.roles_role_key: role}, id_key=cfg.roles_id_key)


def grant_role(provider: KVStoreProvider, username: str, role: str) -> bool:
    """Link user to role. Returns False if either does not exist."""
    cfg = provider.config
    user = provider.get_user_details(username)
    role_record = _find_role(provider, role)
    if user is None or role_record is None:
        return False
    link = {
        cfg.user_roles_user_id_key: user[cfg.users_id_key],
        cfg.user_roles_role_id_key: role_record[cfg.roles_id_key],
    }
    if provider.store.quick_select(cfg.user_roles_path, link) is None:
        provider.store.quick_insert(cfg.user_roles_path, link)
    return True


def revoke_role(provider: KVStoreProvider, username: str, role: str) -> bool:
    """Remove the user-role link. Returns False if nothing was removed."""
    cfg = provider.config
    user = provider.get_user_details(username)
    role_record = _find_role(provider, role)
    if user is None or role_record is None:
        return False
    removed = provider.store.quick_delete(
        cfg.user_roles_path,
        {
            cfg.user_roles_user_id_key: user[cfg.users_id_key],
            cfg.user_roles_role_id_key: role_record[cfg.roles_id_key],
        },
    )
    return removed > 0


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _run(provider: KVStoreProvider, args: argparse.Namespace) -> int:
    if args.command == "create-user":
        user = provider.create_user(username=args.username, **_parse_fields(args.field))
        _print_user(provider, user)
        return 0

    if args.command == "set-password":
        if provider.set_user_password(args.username, _read_password(args, confirm=True)) is None:
            print(f"  [!] No such user: {args.username}")
            return 1
        print(f"Password updated for {args.username}.")
        return 0

    if args.command == "show-user":
        user = provider.get_user_details(args.username)
        if user is None:
            print(f"  [!] No such user: {args.username}")
            return 1
        _print_user(provider, user)
        return 0

    if args.command == "check":
        if provider.authenticate_user(args.username, _read_password(args, confirm=False)):
            print("allow")
            return 0
        print("deny")
        return 1

    if args.command == "roles":
        roles = provider.get_user_roles(args.username)
        if roles is None:
            print(f"  [!] No such user: {args.username}")
            return 1
        for role in roles:
            print(role)
        return 0

    if args.command == "add-role":
        role = add_role(provider, args.role)
        print(f"Role {args.role} (id {role[provider.config.roles_id_key]}).")
        return 0

    if args.command == "grant-role":
        if not grant_role(provider, args.username, args.role):
            print(f"  [!] Unknown user or role: {args.username} / {args.role}")
            return 1
        print(f"Granted {args.role} to {args.username}.")
        return 0

    if args.command == "revoke-role":
        if not revoke_role(provider, args.username, args.role):
            print(f"  [!] {args.username} does not hold {args.role}")
            return 1
        print(f"Revoked {args.role} from {args.username}.")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kvauth",
        description="Manage users and roles in the kvauth key-value store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--connection",
        metavar="NAME",
        default=None,
        help="Named store connection from STORE_CONNECTIONS (default: STORE_URL)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a user with no password")
    create.add_argument("username")
    create.add_argument(
        "--field",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra field to store on the record (repeatable)",
    )

    for name, text in (("set-password", "Set a user's password"), ("check", "Test a username/password pair")):
        p = sub.add_parser(name, help=text)
        p.add_argument("username")
        p.add_argument("--password", default=None, help="Password (prompted for if omitted)")

    sub.add_parser("show-user", help="Print a user's record").add_argument("username")
    sub.add_parser("roles", help="List a user's roles").add_argument("username")
    sub.add_parser("add-role", help="Create a role").add_argument("role")

    for name, text in (("grant-role", "Give a user a role"), ("revoke-role", "Take a role from a user")):
        p = sub.add_parser(name, help=text)
        p.add_argument("username")
        p.add_argument("role")

    return parser


def main(argv: Optional[list[str]] = None, provider: Optional[KVStoreProvider] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if provider is None:
        config = settings.auth_provider
        if args.connection is not None:
            config = config.model_copy(update={"connection_name": args.connection})
        provider = KVStoreProvider(config=config, hasher=BcryptHasher(rounds=settings.bcrypt_rounds))

    try:
        return _run(provider, args)
    except (ValueError, RuntimeError) as e:
        # Usage and configuration errors; store errors propagate with a traceback.
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"  [!] {e}")
        return 2
    finally:
        close_all()


if __name__ == "__main__":
    sys.exit(main())
