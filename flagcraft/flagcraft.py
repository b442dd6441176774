#!/usr/bin/env python
"""
Local feature flag and A/B test evaluation.

A ``FlagCraft`` instance holds one set of feature definitions and one user
context. Evaluation never performs I/O; the only side effects are the
tracking callback and subscription notifications fired for experiment
exposures.
"""

import logging

from typing import Any, Callable, Dict, Optional

from .common_types import (
    EvaluationContext,
    Experiment,
    Feature,
    FeatureResult,
    Result,
    TrackingPolicy,
)
from .core import eval_feature as core_eval_feature, run_experiment
from .store import FeatureDefinitions, FeatureStore
from .tracking import ExperimentCallback, TrackingDispatcher

logger = logging.getLogger("flagcraft")


class FlagCraft(object):
    def __init__(
        self,
        enabled: bool = True,
        attributes: Optional[dict] = None,
        url: str = "",
        features: Optional[FeatureDefinitions] = None,
        saved_groups: Optional[dict] = None,
        qa_mode: bool = False,
        forced_variations: Optional[Dict[str, int]] = None,
        on_experiment_viewed: Optional[ExperimentCallback] = None,
        tracking_policy: TrackingPolicy = TrackingPolicy.EXPOSURES,
    ):
        self._enabled = enabled
        self._attributes = attributes if attributes is not None else {}
        self._url = url
        self._qa_mode = qa_mode
        self._forced_variations = dict(forced_variations or {})

        self._store = FeatureStore(saved_groups=saved_groups)
        self._dispatcher = TrackingDispatcher(on_experiment_viewed, tracking_policy)

        if features:
            self.set_features(features)

    def set_features(self, features: FeatureDefinitions) -> None:
        self._store.set_features(features)

    def get_features(self) -> Dict[str, Feature]:
        return dict(self._store.features)

    def set_saved_groups(self, saved_groups: dict) -> None:
        self._store.set_saved_groups(saved_groups)

    def get_attributes(self) -> dict:
        return self._attributes

    def set_attributes(self, attributes: dict) -> None:
        # Replaced wholesale, never merged
        self._attributes = attributes if attributes is not None else {}

    def set_forced_variations(self, forced_variations: Dict[str, int]) -> None:
        self._forced_variations = dict(forced_variations or {})

    def set_qa_mode(self, qa_mode: bool) -> None:
        self._qa_mode = bool(qa_mode)

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)

    def set_url(self, url: str) -> None:
        self._url = url or ""

    def set_tracking_callback(self, callback: Optional[ExperimentCallback]) -> None:
        self._dispatcher.set_tracking_callback(callback)

    def _get_eval_context(self) -> EvaluationContext:
        # Snapshot the current settings for a single evaluation call
        return EvaluationContext(
            enabled=self._enabled,
            attributes=self._attributes,
            forced_variations=self._forced_variations,
            qa_mode=self._qa_mode,
            url=self._url,
        )

    def eval_feature(self, key: str) -> FeatureResult:
        return core_eval_feature(
            key,
            self._get_eval_context(),
            self._store,
            tracking_cb=self._dispatcher.report,
        )

    def is_on(self, key: str) -> bool:
        return self.eval_feature(key).on

    def is_off(self, key: str) -> bool:
        return self.eval_feature(key).off

    def get_feature_value(self, key: str, fallback: Any = None) -> Any:
        res = self.eval_feature(key)
        return res.value if res.value is not None else fallback

    def run(self, experiment: Experiment) -> Result:
        return run_experiment(
            experiment,
            self._get_eval_context(),
            saved_groups=self._store.saved_groups,
            tracking_cb=self._dispatcher.report,
        )

    def subscribe(self, callback: ExperimentCallback) -> Callable[[], None]:
        return self._dispatcher.subscribe(callback)

    def unsubscribe(self, callback: ExperimentCallback) -> None:
        self._dispatcher.unsubscribe(callback)

    def get_all_results(self) -> Dict[str, Dict[str, Any]]:
        return self._dispatcher.get_all_results()

    def destroy(self) -> None:
        self._dispatcher.clear()
        self._store.clear()
        self._forced_variations = {}
        self._attributes = {}

    # camelCase aliases
    resolveFeature = eval_feature
    evalFeature = eval_feature
    getAttributes = get_attributes
    setAttributes = set_attributes
    setForcedVariations = set_forced_variations
    setQAMode = set_qa_mode
    setEnabled = set_enabled
