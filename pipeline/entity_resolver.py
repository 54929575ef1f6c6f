"""
Entity Resolver

Maps raw identifiers (drug names, brand names) to a primary ticker plus
related tickers using config/entity_mappings.json.

Lookup order:
1. Exact match on the raw name or any alias
2. Substring match in either direction (e.g. "KEYTRUDA 100MG")
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pipeline.errors import EntityResolutionMiss
from pipeline.models import EntityMapping

logger = logging.getLogger(__name__)

project_root = Path(__file__).parent.parent

# Names shorter than this never take part in substring matching
MIN_SUBSTRING_LENGTH = 4


class EntityResolver:
    """Resolves raw identifiers to EntityMappings."""

    def __init__(
        self,
        mappings: Optional[Iterable[EntityMapping]] = None,
        mapping_path: Optional[str] = None
    ):
        """
        Initialize resolver.

        Args:
            mappings: Explicit mappings (take precedence over the file)
            mapping_path: Path to entity_mappings.json
        """
        if mappings is None:
            if mapping_path is None:
                mapping_path = project_root / "config" / "entity_mappings.json"
            mappings = self._load_mappings(Path(mapping_path))

        self.mappings: List[EntityMapping] = list(mappings)
        self._by_name: Dict[str, EntityMapping] = {}
        for mapping in self.mappings:
            for name in mapping.names():
                self._by_name.setdefault(name, mapping)

        logger.debug(f"EntityResolver loaded {len(self.mappings)} mappings")

    def _load_mappings(self, path: Path) -> List[EntityMapping]:
        """Load mappings from JSON file."""
        if not path.exists():
            logger.warning(f"Entity mapping file not found: {path}")
            return []

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        return [EntityMapping.from_dict(m) for m in data.get("mappings", [])]

    def lookup(self, raw_identifier: Optional[str]) -> Optional[EntityMapping]:
        """
        Find the mapping for a raw identifier.

        Args:
            raw_identifier: Raw name as reported upstream

        Returns:
            EntityMapping or None
        """
        if not raw_identifier:
            return None

        key = raw_identifier.strip().upper()
        if key in self._by_name:
            return self._by_name[key]

        if len(key) < MIN_SUBSTRING_LENGTH:
            return None

        for name, mapping in self._by_name.items():
            if len(name) < MIN_SUBSTRING_LENGTH:
                continue
            if name in key or key in name:
                return mapping

        return None

    def resolve(self, raw_identifier: Optional[str]) -> EntityMapping:
        """Like lookup() but raises EntityResolutionMiss when nothing matches."""
        mapping = self.lookup(raw_identifier)
        if mapping is None:
            raise EntityResolutionMiss(raw_identifier or "")
        return mapping
