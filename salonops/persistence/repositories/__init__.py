"""Repository implementations."""

from salonops.persistence.repositories.base import BaseRepository
from salonops.persistence.repositories.client_merge_log_repository import ClientMergeLogRepository
from salonops.persistence.repositories.client_repository import ClientRepository
from salonops.persistence.repositories.user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "ClientRepository",
    "ClientMergeLogRepository",
]
