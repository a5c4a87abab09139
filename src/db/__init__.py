"""Database package for the deployment store."""

from src.db.base import Base
from src.db.engine import build_engine
from src.db.models import (
    DeploymentRunRecord,
    DeploymentStageRecord,
    HealthCheckRecord,
    RollbackEventRecord,
    VersionMarkerRecord,
)

__all__ = [
    "Base",
    "build_engine",
    "DeploymentRunRecord",
    "DeploymentStageRecord",
    "HealthCheckRecord",
    "RollbackEventRecord",
    "VersionMarkerRecord",
]
