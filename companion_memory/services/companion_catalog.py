"""
Read-only access to companion persona data (name, instructions, seed material).
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from ..models.core import CompanionProfile
from ..utils.logging_config import get_logger
from .errors import CatalogError

logger = get_logger(__name__)


class CompanionCatalog(ABC):
    """Companion metadata collaborator; the memory layer never writes to it."""

    @abstractmethod
    def get(self, companion_id: str) -> Optional[CompanionProfile]:
        """Return the profile for ``companion_id`` or None if it does not exist."""


class InMemoryCompanionCatalog(CompanionCatalog):
    """Catalog backed by a fixed set of profiles."""

    def __init__(self, profiles: Iterable[CompanionProfile] = ()):
        self._profiles: Dict[str, CompanionProfile] = {profile.companion_id: profile for profile in profiles}

    def get(self, companion_id: str) -> Optional[CompanionProfile]:
        return self._profiles.get(companion_id)


class JsonCompanionCatalog(InMemoryCompanionCatalog):
    """Catalog loaded from a JSON file.

    The file holds a list of objects with ``id``, ``name``, ``instructions`` and
    ``seed`` keys.
    """

    def __init__(self, path: str):
        """
        Load companion profiles from ``path``.

        Raises:
            CatalogError: If the file is missing or malformed
        """
        self.path = path

        if not os.path.exists(path):
            raise CatalogError(f'Companion catalog not found: {path}')

        try:
            with open(path, encoding='utf-8') as handle:
                raw = json.load(handle)
            profiles = [
                CompanionProfile(companion_id=str(item['id']),
                                 name=item['name'],
                                 instructions=item.get('instructions', ''),
                                 seed=item.get('seed', '')) for item in raw
            ]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error(f'Invalid companion catalog {path}: {e}')
            raise CatalogError(f'Invalid companion catalog {path}: {e}')

        super().__init__(profiles)
        logger.info(f'Loaded {len(profiles)} companions from {path}')
