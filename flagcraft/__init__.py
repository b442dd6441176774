from .flagcraft import FlagCraft, logger

from .common_types import (
    EvaluationContext,
    Experiment,
    ExperimentRule,
    Feature,
    FeatureResult,
    FeatureRule,
    ForceRule,
    Namespace,
    Result,
    TrackingPolicy,
    VariationMeta,
    rule_from_dict,
)
from .conditions import eval_condition
from .store import FeatureStore
from .tracking import TrackingDispatcher

__version__ = "0.1.0"
