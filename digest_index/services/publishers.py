"""
Publisher name normalization.
Resolves free-text publisher names to canonical keys through an alias table.
"""
from typing import Dict, Iterable, Mapping, Optional

from digest_index.core.common import get_service_logger

logger = get_service_logger("publishers")

# canonical key -> aliases
DEFAULT_PUBLISHER_ALIASES: Dict[str, Iterable[str]] = {
    "techcrunch": ["tc", "tech crunch", "techcrunch.com"],
    "brit+co": ["brit", "britco", "brit co", "brit-co", "brit.co"],
    "mashable": ["mash", "mashable.com"],
    "engadget": ["eng", "engadget.com"],
    "theverge": ["verge", "the verge", "theverge.com"],
    "wired": ["wired.com"],
    "ars technica": ["ars", "arstechnica", "ars-technica"],
}


class PublisherNormalizer:
    """
    Case-insensitive, table-driven publisher resolution.

    Matching is exact against the alias table; there is no fuzzy or
    edit-distance matching. Names that match nothing come back unchanged.
    """

    def __init__(self, aliases: Optional[Mapping[str, Iterable[str]]] = None):
        table = DEFAULT_PUBLISHER_ALIASES if aliases is None else aliases
        self._canonical = {key.strip().lower() for key in table}
        self._alias_index: Dict[str, str] = {}
        for canonical, alias_list in table.items():
            key = canonical.strip().lower()
            for alias in alias_list:
                normalized = alias.strip().lower()
                existing = self._alias_index.get(normalized)
                if existing is not None and existing != key:
                    raise ValueError(
                        f"Alias '{alias}' maps to both '{existing}' and '{key}'"
                    )
                self._alias_index[normalized] = key

    @property
    def canonical_keys(self) -> frozenset:
        return frozenset(self._canonical)

    def normalize(self, name: str) -> str:
        """Return the canonical key for ``name``, or ``name`` itself when unknown."""
        if not isinstance(name, str):
            return name

        normalized = name.strip().lower()

        if normalized in self._canonical:
            return normalized

        canonical = self._alias_index.get(normalized)
        if canonical is not None:
            return canonical

        logger.debug("publisher_not_in_alias_table", publisher=name)
        return name

    def is_known(self, name: str) -> bool:
        normalized = name.strip().lower()
        return normalized in self._canonical or normalized in self._alias_index


publisher_normalizer = PublisherNormalizer()
