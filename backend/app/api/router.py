from fastapi import APIRouter

from .minecraft import migration as minecraft_migration
from .panel import migration as panel_migration
from .panel import roles as panel_roles
from .panel import staff as panel_staff

router = APIRouter(prefix="/api")

_panel_routers = [
    panel_migration.router,
    panel_roles.router,
    panel_staff.router,
]

_minecraft_routers = [
    minecraft_migration.router,
]

panel_router = APIRouter(prefix="/panel")
for _router in _panel_routers:
    panel_router.include_router(_router)

minecraft_router = APIRouter(prefix="/minecraft")
for _router in _minecraft_routers:
    minecraft_router.include_router(_router)

router.include_router(panel_router)
router.include_router(minecraft_router)
