#!/usr/bin/env python
"""Issue or revoke an API key for a principal identified by provider id.

Run from the project root::

    python scripts/generate_api_key.py --provider-id github|12345 --name ci

A new key is ``sk_`` followed by 64 hex characters.  Only its SHA-256 digest
and display prefix are stored; the raw key is printed to stdout exactly
once and cannot be retrieved again.

Usage::

    python scripts/generate_api_key.py --provider-id ID --name NAME
    python scripts/generate_api_key.py --provider-id ID --revoke KEY_ID

Options:
    --provider-id  (required) External provider id of the principal.
    --name         Name of the new key (1-64 characters, unique per principal).
    --revoke       Id of an active key to revoke instead of issuing one.

Exit codes:
    0: Success.
    1: Principal or key not found, duplicate name, or bad arguments.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid
from typing import Optional

# Ensure the src layout is on sys.path when run as a standalone script.
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_SRC_DIR = os.path.join(os.path.dirname(_SCRIPT_DIR), "src")
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)


async def _run(provider_id: str, name: Optional[str], revoke: Optional[uuid.UUID]) -> None:
    """Issue or revoke a key for the principal behind ``provider_id``.

    Raises:
        SystemExit: With code 1 if the principal or key is not found or the
            key name is already taken.
    """
    from sqlalchemy import select  # noqa: PLC0415

    from scrape_gateway.core.database import AsyncSessionLocal, async_engine  # noqa: PLC0415
    from scrape_gateway.core.exceptions import GatewayError  # noqa: PLC0415
    from scrape_gateway.core.models import Principal  # noqa: PLC0415
    from scrape_gateway.core.principal_service import PrincipalService  # noqa: PLC0415

    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Principal.id).where(
                    Principal.provider_id == provider_id,
                    Principal.deleted_at.is_(None),
                )
            )
            principal_id = result.scalar_one_or_none()
            if principal_id is None:
                print(
                    f"[generate_api_key] ERROR: No principal with provider id '{provider_id}'.",
                    file=sys.stderr,
                )
                sys.exit(1)

            service = PrincipalService(session)
            try:
                if revoke is not None:
                    await service.revoke_api_key(principal_id, revoke)
                    print(f"[generate_api_key] API key {revoke} revoked for '{provider_id}'.")
                    return

                issued = await service.issue_api_key(principal_id, name or "default")
            except GatewayError as exc:
                print(f"[generate_api_key] ERROR: {exc.message}", file=sys.stderr)
                sys.exit(1)

            print(f"[generate_api_key] API key '{issued.name}' issued for '{provider_id}':")
            print(f"\n  {issued.raw_key}\n")
            print(
                "Store this key securely; it cannot be retrieved again.\n"
                "Use it in API requests as:\n"
                "  X-API-Key: <key>\n"
                "  (or Authorization: Bearer <key>)\n"
            )
    finally:
        await async_engine.dispose()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Issue or revoke a Scrape Gateway API key.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--provider-id",
        required=True,
        help="External provider id of the principal.",
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument(
        "--name",
        default="default",
        help="Name of the new key (default: %(default)s).",
    )
    action.add_argument(
        "--revoke",
        type=uuid.UUID,
        metavar="KEY_ID",
        help="Revoke the key with this id instead of issuing a new one.",
    )
    args = parser.parse_args()
    if not 1 <= len(args.name.strip()) <= 64:
        parser.error("--name must be 1-64 characters")
    return args


def main() -> None:
    """Entry point for the API key script."""
    args = _parse_args()
    asyncio.run(_run(provider_id=args.provider_id, name=args.name.strip(), revoke=args.revoke))


if __name__ == "__main__":
    main()
