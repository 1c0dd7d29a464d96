from __future__ import annotations

import logging

from ._version import __version__
from .client import SkillSyncError, SkillSyncHTTPError
from .models import AppType, InstalledSkill, Repository, SkillsIndex, SyncMethod
from .service import SkillService

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "AppType",
    "InstalledSkill",
    "Repository",
    "SkillService",
    "SkillSyncError",
    "SkillSyncHTTPError",
    "SkillsIndex",
    "SyncMethod",
]
