#!/usr/bin/env python3
"""
authcore -- administrative CLI.

Usage:
  python main.py seed-roles
  python main.py purge-tokens
  python main.py create-user --name "Alice" --username alice --email alice@x.com --password pw123
  python main.py create-user ... --role ADMIN

Environment variables:
  SECRET_KEY     Required. Signing secret, at least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to sqlite:///authcore.db.
"""

import argparse
import logging
import sys

from auth.roles import DEFAULT_ROLES
from auth.service import build_auth_service
from auth.store import RoleStore, create_store_engine
from core.config import get_settings
from core.errors import AuthError

logger = logging.getLogger("authcore.cli")


def seed_roles(role_store: RoleStore) -> int:
    """Upsert the default role hierarchy. Safe to run repeatedly."""
    for role in DEFAULT_ROLES:
        role_store.upsert_role(role)
        logger.info("Role %s (parent=%s)", role.name, role.parent or "-")
    return len(DEFAULT_ROLES)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authcore",
        description="Administer the authcore role hierarchy, users and refresh tokens.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed-roles", help="Create or update the default USER -> ... -> SUPER_ADMIN hierarchy")
    sub.add_parser("purge-tokens", help="Delete revoked and expired refresh tokens")

    create = sub.add_parser("create-user", help="Register a principal")
    create.add_argument("--name", required=True)
    create.add_argument("--username", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--password", required=True)
    create.add_argument("--role", default=None, help="Defaults to Settings.default_role")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = get_settings()
    engine = create_store_engine(settings.database_url)
    try:
        if args.command == "seed-roles":
            count = seed_roles(RoleStore(engine))
            print(f"Seeded {count} roles.")
        elif args.command == "purge-tokens":
            removed = build_auth_service(settings, engine).lifecycle.sweep()
            print(f"Purged {removed} refresh token record(s).")
        elif args.command == "create-user":
            service = build_auth_service(settings, engine)
            principal = service.register(
                name=args.name,
                username=args.username,
                email=args.email,
                password=args.password,
                role=args.role,
            )
            print(f"Created {principal.username} ({principal.id}) with role {principal.role}.")
    except AuthError as exc:
        print(f"  [!] {exc.code}: {exc}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
