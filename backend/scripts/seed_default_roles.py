"""
Provision the default staff roles for a server.

Existing roles are left untouched, so the script can be re-run safely.

Usage:
    python -m scripts.seed_default_roles <server-name> [--punishment-type "Chat Abuse" ...]
"""
import argparse
import asyncio
import logging
import os
import sys

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.auth import rbac_contract
from app.crud.staff_role import StaffRoleRepository
from app.database import AsyncSessionLocal

logger = logging.getLogger("modl.seed")


async def seed_default_roles(server_name: str, punishment_types: list[str]) -> int:
    """Create any missing default role for ``server_name``; return how many were created."""
    punishment_permissions = [
        rbac_contract.punishment_permission_id(name) for name in punishment_types
    ]
    created = 0
    async with AsyncSessionLocal() as session:
        repo = StaffRoleRepository(session)
        for role in rbac_contract.DEFAULT_ROLES:
            name = str(role["name"])
            if await repo.get_by_name(server_name, name) is not None:
                logger.info("[SEED] role_exists server=%s role=%s", server_name, name)
                continue
            permissions = rbac_contract.validate_permissions(
                rbac_contract.default_role_permissions(name, punishment_permissions)
            )
            await repo.create(
                server_name=server_name,
                slug=str(role["slug"]),
                name=name,
                order=int(role["order"]),  # type: ignore[call-overload]
                permissions=permissions,
                description=str(role["description"]),
                is_default=True,
            )
            created += 1
            logger.info(
                "[SEED] role_created server=%s role=%s permissions=%s",
                server_name,
                name,
                len(permissions),
            )
        await session.commit()
    return created


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the default staff roles for a server")
    parser.add_argument("server_name")
    parser.add_argument("--punishment-type", action="append", default=[], dest="punishment_types")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    created = asyncio.run(seed_default_roles(args.server_name, args.punishment_types))
    logger.info("[SEED] done server=%s created=%s", args.server_name, created)


if __name__ == "__main__":
    main()
