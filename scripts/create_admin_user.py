#!/usr/bin/env python3
"""
Create an operator account.

Usage:
    python3 scripts/create_admin_user.py --email ops@example.com --name "Ops" --role admin

The password is read from the terminal, or from OPERATOR_PASSWORD when set
(for non-interactive provisioning).
"""

import argparse
import asyncio
import getpass
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from opsconsole.config import settings
from opsconsole.db.session import close_engines, get_write_session
from opsconsole.exceptions import ValidationError
from opsconsole.models.api import AdminRole
from opsconsole.services.admin_auth import AdminAuthService

logger = structlog.get_logger()


def _read_password() -> str:
    password = os.getenv("OPERATOR_PASSWORD")
    if password:
        return password
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("Passwords do not match", file=sys.stderr)
        sys.exit(1)
    return password


async def create_operator(email: str, full_name: str, role: AdminRole, password: str) -> None:
    service = AdminAuthService(jwt_secret=settings.ADMIN_JWT_SECRET)
    try:
        async with get_write_session() as session:
            admin_user = await service.create_admin_user(
                session, email=email, full_name=full_name, password=password, role=role
            )
        logger.info("operator_created", user_id=str(admin_user.id), email=admin_user.email)
    finally:
        await close_engines()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Create an operator console account")
    parser.add_argument("--email", required=True, help="Login email")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument(
        "--role",
        choices=[role.value for role in AdminRole],
        default=AdminRole.VIEWER.value,
        help="admin can change credits, secrets and incidents; viewer is read-only",
    )
    args = parser.parse_args()

    try:
        asyncio.run(create_operator(args.email, args.name, AdminRole(args.role), _read_password()))
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
