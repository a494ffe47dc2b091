"""
Secure admin provisioning utility.

Creates an ADMIN account (or promotes an existing one) through UserService, so
the same validation and uniqueness rules apply as for API-created users.

Usage examples:
  python -m user_directory.create_admin --username admin --email admin@example.com \
      --first-name System --last-name Admin
  python -m user_directory.create_admin --username manager --email manager@example.com \
      --promote-existing --reset-password
"""

import argparse
import asyncio
import getpass
from typing import NoReturn

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from user_directory.core.database import async_session_factory
from user_directory.core.exceptions import DirectoryError, NotFoundError
from user_directory.core.logging import get_logger, setup_logging
from user_directory.models.user import User, UserRole
from user_directory.schemas.user import UserCreate
from user_directory.services.user_service import UserService

logger = get_logger("create_admin")


class ProvisioningError(Exception):
    """The requested provisioning would be unsafe without an explicit flag."""


def _resolve_password(cli_password: str | None) -> str:
    if cli_password:
        return cli_password.strip()

    first = getpass.getpass("Admin password: ").strip()
    second = getpass.getpass("Confirm password: ").strip()
    if first != second:
        raise ProvisioningError("Passwords do not match.")
    return first


def _fail(message: str) -> NoReturn:
    raise SystemExit(f"❌ {message}")


async def provision_admin(
    session: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone_number: str | None = None,
    promote_existing: bool = False,
    reset_password: bool = False,
) -> tuple[User, bool]:
    """
    Ensure ``username`` is an ACTIVE admin. Returns the user and whether it
    was newly created.
    """
    service = UserService(session)

    try:
        existing = await service.get_user_by_username(username)
    except NotFoundError:
        existing = None

    if existing is None:
        user = await service.create_user(
            UserCreate(
                username=username,
                email=email,
                password=password,
                first_name=first_name or "System",
                last_name=last_name or "Admin",
                phone_number=phone_number,
                role=UserRole.ADMIN,
            )
        )
        logger.info("Created admin account: %s", user.username)
        return user, True

    if existing.role != UserRole.ADMIN and not promote_existing:
        raise ProvisioningError(
            "User exists with non-admin role. Re-run with --promote-existing "
            "to explicitly promote this account."
        )

    user = await service.change_role(existing.id, UserRole.ADMIN)
    user = await service.activate_user(user.id)
    if reset_password:
        user = await service.reset_password(user.id, password)
        logger.info("Reset password for admin account: %s", user.username)

    logger.info("Admin account confirmed: %s", user.username)
    return user, False


async def _run(args: argparse.Namespace) -> None:
    password = _resolve_password(args.password)

    async with async_session_factory() as session:
        user, created = await provision_admin(
            session,
            username=args.username.strip(),
            email=args.email,
            password=password,
            first_name=args.first_name,
            last_name=args.last_name,
            phone_number=args.phone,
            promote_existing=args.promote_existing,
            reset_password=args.reset_password,
        )
        await session.commit()

    if created:
        print(f"✅ Admin account created: {user.username} <{user.email}>")
    else:
        print(f"✅ Admin account updated: {user.username} <{user.email}>")
        if args.reset_password:
            print("🔐 Password was reset with Argon2 hashing.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create/update an admin account safely (hashed password)."
    )
    parser.add_argument("--username", required=True, help="Admin username (3-20 chars)")
    parser.add_argument("--email", required=True, help="Admin email")
    parser.add_argument("--first-name", help="First name (default: System)")
    parser.add_argument("--last-name", help="Last name (default: Admin)")
    parser.add_argument("--phone", default=None, help="Phone number")
    parser.add_argument(
        "--password",
        help="Password (omit to enter securely via prompt)",
    )
    parser.add_argument(
        "--promote-existing",
        action="store_true",
        help="Allow promoting an existing non-admin user to admin",
    )
    parser.add_argument(
        "--reset-password",
        action="store_true",
        help="Reset password for existing account",
    )
    return parser


def main() -> None:
    setup_logging()
    parser = _build_parser()
    args = parser.parse_args()
    try:
        asyncio.run(_run(args))
    except (ProvisioningError, DirectoryError) as exc:
        _fail(str(exc))
    except SchemaValidationError as exc:
        _fail(f"Invalid admin details: {exc.error_count()} error(s)\n{exc}")


if __name__ == "__main__":
    main()
