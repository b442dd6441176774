import logging

from collections.abc import Mapping
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .common_types import Feature, FeatureRule, rule_from_dict

logger = logging.getLogger("flagcraft.store")

FeatureDefinitions = Union[Mapping, Iterable[Tuple[str, Union[Feature, dict]]]]


def _coerce_feature(key: str, definition) -> Feature:
    if isinstance(definition, Feature):
        return definition

    rules: List[FeatureRule] = []
    for raw in definition.get("rules") or []:
        try:
            rules.append(rule_from_dict(raw))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Skip invalid rule for feature %s: %s", key, e)
    return Feature(defaultValue=definition.get("defaultValue"), rules=tuple(rules))


class FeatureStore(object):
    """In-memory feature definitions, replaced wholesale on every update."""

    def __init__(self, features: Optional[FeatureDefinitions] = None, saved_groups: Optional[dict] = None) -> None:
        self._features: Dict[str, Feature] = {}
        self._saved_groups: Dict[str, list] = dict(saved_groups or {})
        if features:
            self.set_features(features)

    def set_features(self, features: FeatureDefinitions) -> None:
        items = features.items() if isinstance(features, Mapping) else features
        loaded: Dict[str, Feature] = {}
        # Duplicate keys in a pair list: the last definition wins
        for key, definition in items:
            loaded[key] = _coerce_feature(key, definition)
        self._features = loaded
        logger.debug("Loaded %d feature definitions", len(loaded))

    def set_saved_groups(self, saved_groups: Optional[dict]) -> None:
        self._saved_groups = dict(saved_groups or {})

    def get(self, key: str) -> Optional[Feature]:
        return self._features.get(key)

    def keys(self):
        return self._features.keys()

    @property
    def features(self) -> Mapping:
        return MappingProxyType(self._features)

    @property
    def saved_groups(self) -> Mapping:
        return MappingProxyType(self._saved_groups)

    def clear(self) -> None:
        self._features = {}
        self._saved_groups = {}

    def __contains__(self, key) -> bool:
        return key in self._features

    def __len__(self) -> int:
        return len(self._features)
