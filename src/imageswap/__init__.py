"""
imageswap - self-update orchestrator for containerized deployments
"""

__version__ = "0.3.0"

from .core import ImageUpdater, UpdaterError

__all__ = ["ImageUpdater", "UpdaterError"]
