"""
Exposure tracking and assignment subscriptions.

Every concluded experiment run is reported here. The tracking callback
sees every exposure; subscribers only hear about an experiment when the
variation a user lands in differs from the last one recorded for it.
"""

import logging
import threading

from typing import Any, Callable, Dict, List, Optional

from .common_types import Experiment, Result, TrackingPolicy

logger = logging.getLogger("flagcraft.tracking")

ExperimentCallback = Callable[[Experiment, Result], Any]


class TrackingDispatcher(object):
    def __init__(
        self,
        on_experiment_viewed: Optional[ExperimentCallback] = None,
        policy: TrackingPolicy = TrackingPolicy.EXPOSURES,
    ) -> None:
        self._tracking_callback = on_experiment_viewed
        self.policy = policy
        # experiment key -> {"experiment": ..., "result": ...}
        self._assigned: Dict[str, Dict[str, Any]] = {}
        self._subscriptions: List[ExperimentCallback] = []
        self._lock = threading.RLock()

    def set_tracking_callback(self, callback: Optional[ExperimentCallback]) -> None:
        self._tracking_callback = callback

    def should_report(self, result: Result) -> bool:
        return result.inExperiment or self.policy is TrackingPolicy.ALL_EVALUATIONS

    def report(self, experiment: Experiment, result: Result) -> None:
        if experiment is None or not self.should_report(result):
            return

        self._track(experiment, result)

        with self._lock:
            prev = self._assigned.get(experiment.key)
            changed = prev is None or prev["result"].variationId != result.variationId
            self._assigned[experiment.key] = {"experiment": experiment, "result": result}
            if not changed:
                return
            for callback in list(self._subscriptions):
                try:
                    callback(experiment, result)
                except Exception:
                    logger.exception("Error in subscription callback for experiment %s", experiment.key)

    def _track(self, experiment: Experiment, result: Result) -> None:
        callback = self._tracking_callback
        if not callback:
            return
        try:
            callback(experiment, result)
        except Exception as e:
            logger.warning("Tracking callback failed for experiment %s: %s", experiment.key, e)

    def subscribe(self, callback: ExperimentCallback) -> Callable[[], None]:
        with self._lock:
            if callback not in self._subscriptions:
                self._subscriptions.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: ExperimentCallback) -> None:
        with self._lock:
            if callback in self._subscriptions:
                self._subscriptions.remove(callback)

    def get_all_results(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return dict(self._assigned)

    def clear(self) -> None:
        with self._lock:
            self._assigned.clear()
            self._subscriptions.clear()
        self._tracking_callback = None
