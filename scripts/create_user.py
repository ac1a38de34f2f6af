#!/usr/bin/env python3
"""Create a local (password) account for initial setup.

Usage:
    # Using environment variables:
    MIXTAPE_EMAIL=dj@example.com MIXTAPE_USERNAME=dj MIXTAPE_PASSWORD=secret123 \
        python scripts/create_user.py

    # Or with command line args:
    python scripts/create_user.py --email dj@example.com --username dj --password secret123

Environment Variables:
    MIXTAPE_EMAIL, MIXTAPE_USERNAME, MIXTAPE_PASSWORD: account fields
    JWT_SECRET: token signing secret (required, as for the server)
    DATABASE_URL: PostgreSQL connection string (memory store is used if unset)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def create_user(email: str, username: str, password: str, dry_run: bool = False) -> dict:
    """Register an account through the auth service.

    Returns:
        dict with user_id, email, username and status ('created' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from mixtape.config import get_settings, require_startup_settings
    from mixtape.service.runtime import get_runtime

    require_startup_settings(get_settings())
    runtime = get_runtime()

    if dry_run:
        conflict = runtime.store.find_conflicting_user(email, username)
        if conflict:
            print(f"[DRY RUN] Account would conflict with existing user {conflict.id}")
        else:
            print(f"[DRY RUN] Would create user: {email} ({username})")
        return {"user_id": None, "email": email, "username": username, "status": "dry_run"}

    user, tokens = await runtime.auth.register(email, username, password)
    runtime.close()
    return {
        "user_id": user.id,
        "email": user.email,
        "username": user.username,
        "status": "created",
        "access_token": tokens.access_token,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Create a Mixtape user account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("MIXTAPE_EMAIL"),
        help="Account email (or set MIXTAPE_EMAIL env var)",
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("MIXTAPE_USERNAME"),
        help="Account username (or set MIXTAPE_USERNAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("MIXTAPE_PASSWORD"),
        help="Account password (or set MIXTAPE_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    for name in ("email", "username", "password"):
        if not getattr(args, name):
            print(f"Error: --{name} or MIXTAPE_{name.upper()} environment variable required")
            sys.exit(1)

    from pydantic import ValidationError as RequestValidationError

    from mixtape.api.schemas import RegisterRequest
    from mixtape.service.errors import ServiceError

    try:
        body = RegisterRequest(email=args.email, username=args.username, password=args.password)
    except RequestValidationError as exc:
        for error in exc.errors():
            print(f"Error: {error['loc'][0]}: {error['msg']}")
        sys.exit(1)

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = asyncio.run(
            create_user(body.email, body.username, body.password, args.dry_run)
        )
    except ServiceError as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nUser created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  Username: {result['username']}")
        print(f"  User ID: {result['user_id']}")
        print(f"  Access Token: {result['access_token'][:50]}...")


if __name__ == "__main__":
    main()
