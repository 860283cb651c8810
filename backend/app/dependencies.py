import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .application.state import get_migration_state
from .background import JobRunner, default_job_runner
from .crud.api_key import ServerApiKeyRepository
from .crud.staff import StaffRepository
from .database import AsyncSessionLocal, get_session
from .errors import ValidationError
from .models.api_key import ServerApiKey
from .models.staff import Staff
from .security.token_inspection import (
    ExpiredTokenError,
    InvalidTokenError,
    validate_access_token,
    validate_api_key,
)
from .services.admin.permission_service import PermissionService
from .services.admin.role_service import RoleService
from .services.admin.staff_service import StaffService
from .services.migration.importer import MigrationImporter
from .services.migration.service import MigrationService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


async def get_server_name(
    x_server_name: str | None = Header(default=None, alias="X-Server-Name"),
) -> str:
    server_name = (x_server_name or "").strip()
    if not server_name:
        raise ValidationError("X-Server-Name header is required")
    return server_name


async def get_current_staff(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    server_name: str = Depends(get_server_name),
    db: AsyncSession = Depends(get_db),
) -> Staff:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )

    try:
        payload = validate_access_token(credentials.credentials, server_name)
    except ExpiredTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired"
        ) from None
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        ) from None

    try:
        staff_id = uuid.UUID(payload["sub"])
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload"
        ) from None

    staff = await StaffRepository(db).get_by_id(server_name, staff_id)
    if staff is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Staff member not found"
        )
    return staff


async def verify_minecraft_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    server_name: str = Depends(get_server_name),
    db: AsyncSession = Depends(get_db),
) -> ServerApiKey:
    try:
        key_hash = validate_api_key(x_api_key)
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="API key required"
        ) from None

    api_key = await ServerApiKeyRepository(db).get_active(server_name, key_hash)
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key"
        )
    return api_key


def get_permission_service(
    server_name: str = Depends(get_server_name),
    db: AsyncSession = Depends(get_db),
) -> PermissionService:
    return PermissionService(db, server_name)


def get_migration_service() -> MigrationService:
    return get_migration_state().migrations


def get_job_runner() -> JobRunner:
    return default_job_runner


def get_staff_service(
    server_name: str = Depends(get_server_name),
    db: AsyncSession = Depends(get_db),
    permissions: PermissionService = Depends(get_permission_service),
) -> StaffService:
    return StaffService(db, server_name, permissions)


def get_role_service(
    server_name: str = Depends(get_server_name),
    db: AsyncSession = Depends(get_db),
    permissions: PermissionService = Depends(get_permission_service),
) -> RoleService:
    return RoleService(db, server_name, permissions)


def get_migration_importer(
    migrations: MigrationService = Depends(get_migration_service),
) -> MigrationImporter:
    return MigrationImporter(AsyncSessionLocal, migrations)


async def require_super_admin_staff(
    request: Request,
    current_staff: Staff = Depends(get_current_staff),
    permissions: PermissionService = Depends(get_permission_service),
) -> Staff:
    await permissions.require_super_admin(current_staff, f"{request.method} {request.url.path}")
    return current_staff
