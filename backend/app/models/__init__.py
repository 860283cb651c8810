from .base import Base
from .staff_role import StaffRole
from .staff import Staff
from .api_key import ServerApiKey
from .player import Player
from .audit_log import AuditLog

__all__ = [
    "Base",
    "StaffRole",
    "Staff",
    "ServerApiKey",
    "Player",
    "AuditLog",
]
