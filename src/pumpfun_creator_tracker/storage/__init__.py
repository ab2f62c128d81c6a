"""Storage layer - Database schemas and repositories."""

from pumpfun_creator_tracker.storage.database import (
    DatabaseManager,
    StoreError,
    StoreUnavailable,
    StoreWriteFailed,
)
from pumpfun_creator_tracker.storage.models import (
    AlertModel,
    Base,
    CoinModel,
    CreatorModel,
    MigrationModel,
)
from pumpfun_creator_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    CoinDTO,
    CoinRepository,
    CreatorDTO,
    CreatorRepository,
    MigrationRepository,
)

__all__ = [
    "AlertDTO",
    "AlertModel",
    "AlertRepository",
    "Base",
    "CoinDTO",
    "CoinModel",
    "CoinRepository",
    "CreatorDTO",
    "CreatorModel",
    "CreatorRepository",
    "DatabaseManager",
    "MigrationModel",
    "MigrationRepository",
    "StoreError",
    "StoreUnavailable",
    "StoreWriteFailed",
]
