#!/usr/bin/env python3
"""Provision the first shop administrator.

Creates a verified admin account, or promotes an existing shopper or seller
to admin. An account that has not verified its email is never promoted: the
address may have been registered by someone else.

    python scripts/bootstrap_admin.py --email ops@shop.example --password 'Str0ng-Admin-Pass'

Credentials may also come from SHOPAUTH_ADMIN_EMAIL / SHOPAUTH_ADMIN_PASSWORD.
Without DATABASE_URL the in-memory store is used, which only makes sense for
a dry run or a smoke test.
"""
from __future__ import annotations

import argparse
import asyncio
import os
import string
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

MIN_ADMIN_PASSWORD_LENGTH = 12


def validate_password(password: str) -> bool:
    """Admins need at least 12 characters from three character classes."""
    if len(password) < MIN_ADMIN_PASSWORD_LENGTH:
        return False
    classes = (
        any(c in string.ascii_uppercase for c in password),
        any(c in string.ascii_lowercase for c in password),
        any(c in string.digits for c in password),
        any(c in string.punctuation for c in password),
    )
    return sum(classes) >= 3


async def bootstrap_admin(
    email: str,
    password: str,
    *,
    first_name: str = "Admin",
    last_name: str = "User",
    dry_run: bool = False,
) -> dict:
    """Ensure ``email`` belongs to a verified admin.

    Returns a dict with ``user_id``, ``email`` and ``status``: one of
    ``created``, ``promoted``, ``already_admin``, ``unverified`` or ``dry_run``.
    """
    # Deferred so main() can adjust the environment before settings load
    from shopauth.service.runtime import get_runtime
    from shopauth.storage.models import Role, UserStatus

    runtime = get_runtime()
    email = email.strip().lower()
    user = runtime.store.get_user_by_email(email)

    if user and user.role == Role.ADMIN.value:
        return {"user_id": user.id, "email": email, "status": "already_admin"}
    if user and not user.is_email_verified:
        return {"user_id": user.id, "email": email, "status": "unverified"}
    if dry_run:
        return {"user_id": user.id if user else None, "email": email, "status": "dry_run"}

    if user:
        runtime.store.update_user_role(user.id, Role.ADMIN.value)
        return {"user_id": user.id, "email": email, "status": "promoted"}

    user = runtime.store.create_user(
        email,
        first_name,
        last_name,
        role=Role.ADMIN.value,
        status=UserStatus.ACTIVE.value,
    )
    pwd_hash, algo = runtime.verifier.hash(password)
    runtime.store.save_password(user.id, pwd_hash, algo)
    return {"user_id": user.id, "email": email, "status": "created"}


_OUTCOMES = {
    "created": "created admin {email} ({user_id})",
    "promoted": "promoted {email} ({user_id}) to admin",
    "already_admin": "{email} is already an admin; nothing to do",
    "unverified": "refusing to promote {email} ({user_id}): its email is not verified",
    "dry_run": "dry run: {email} would be provisioned as admin",
}


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Provision a shop administrator account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", default=os.environ.get("SHOPAUTH_ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("SHOPAUTH_ADMIN_PASSWORD"))
    parser.add_argument("--first-name", default="Admin")
    parser.add_argument("--last-name", default="User")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="report the outcome without writing anything",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    if not args.email or not args.password:
        print("error: an email and a password are required", file=sys.stderr)
        return 2
    if not validate_password(args.password):
        print(
            "error: admin passwords need 12+ characters from at least three of "
            "upper case, lower case, digits and punctuation",
            file=sys.stderr,
        )
        return 2

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("TEST_MODE", "true")
        print("warning: DATABASE_URL unset, using the in-memory store", file=sys.stderr)
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(
            bootstrap_admin(
                args.email,
                args.password,
                first_name=args.first_name,
                last_name=args.last_name,
                dry_run=args.dry_run,
            )
        )
    except Exception as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    message = _OUTCOMES[result["status"]].format(**result)
    if result["status"] == "unverified":
        print(f"error: {message}", file=sys.stderr)
        return 1
    print(message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
