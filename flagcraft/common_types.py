#!/usr/bin/env python

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from typing_extensions import Literal, NotRequired, TypedDict


class VariationMeta(TypedDict):
    key: NotRequired[str]
    name: NotRequired[str]
    passthrough: NotRequired[bool]


class Namespace(NamedTuple):
    """A slice ``[rangeStart, rangeEnd)`` of a shared hash space."""

    id: str
    rangeStart: float
    rangeEnd: float

    @classmethod
    def coerce(cls, value) -> Optional["Namespace"]:
        if value is None or isinstance(value, Namespace):
            return value
        if isinstance(value, dict):
            return cls(value["id"], float(value["rangeStart"]), float(value["rangeEnd"]))
        ns_id, start, end = value
        return cls(ns_id, float(start), float(end))


class TrackingPolicy(Enum):
    # Only report users who were actually assigned a variation
    EXPOSURES = "exposures"
    # Report every concluded run, control results included
    ALL_EVALUATIONS = "all"


def _tuple_or_none(value) -> Optional[tuple]:
    return None if value is None else tuple(value)


@dataclass(frozen=True)
class ForceRule:
    value: Any
    condition: Optional[dict] = None
    coverage: Optional[float] = None
    hashAttribute: str = "id"
    seed: Optional[str] = None
    hashVersion: int = 1
    id: str = ""

    kind: Literal["force"] = field(default="force", init=False)


@dataclass(frozen=True)
class ExperimentRule:
    variations: Tuple[Any, ...]
    key: Optional[str] = None
    weights: Optional[Tuple[float, ...]] = None
    coverage: Optional[float] = None
    hashAttribute: str = "id"
    seed: Optional[str] = None
    hashVersion: int = 1
    namespace: Optional[Namespace] = None
    force: Optional[int] = None
    condition: Optional[dict] = None
    ranges: Optional[Tuple[Tuple[float, float], ...]] = None
    meta: Optional[Tuple[VariationMeta, ...]] = None
    name: Optional[str] = None
    phase: Optional[str] = None
    id: str = ""

    kind: Literal["experiment"] = field(default="experiment", init=False)

    def __post_init__(self) -> None:
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "variations", tuple(self.variations))
        object.__setattr__(self, "weights", _tuple_or_none(self.weights))
        object.__setattr__(self, "namespace", Namespace.coerce(self.namespace))
        if self.ranges is not None:
            object.__setattr__(self, "ranges", tuple(tuple(r) for r in self.ranges))
        object.__setattr__(self, "meta", _tuple_or_none(self.meta))


FeatureRule = Union[ForceRule, ExperimentRule]

_FORCE_FIELDS = ("condition", "coverage", "hashAttribute", "seed", "hashVersion", "id")
_EXPERIMENT_FIELDS = (
    "key", "weights", "coverage", "hashAttribute", "seed", "hashVersion", "namespace",
    "force", "condition", "ranges", "meta", "name", "phase", "id",
)


def rule_from_dict(data: dict) -> FeatureRule:
    """Build a rule from a mapping already in the in-memory rule shape.

    A ``variations`` list makes an experiment rule; otherwise a ``force``
    value makes a force rule.
    """
    if isinstance(data, (ForceRule, ExperimentRule)):
        return data
    if data.get("variations") is not None:
        kwargs = {k: data[k] for k in _EXPERIMENT_FIELDS if data.get(k) is not None}
        return ExperimentRule(variations=data["variations"], **kwargs)
    if "force" in data:
        kwargs = {k: data[k] for k in _FORCE_FIELDS if data.get(k) is not None}
        return ForceRule(value=data["force"], **kwargs)
    raise ValueError("Rule has neither 'force' nor 'variations': %r" % (data,))


@dataclass(frozen=True)
class Feature:
    defaultValue: Any = None
    rules: Tuple[FeatureRule, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(rule_from_dict(r) for r in self.rules))

    @classmethod
    def from_dict(cls, data: dict) -> "Feature":
        return cls(defaultValue=data.get("defaultValue"), rules=data.get("rules") or ())


class Experiment(object):
    def __init__(
        self,
        key: str,
        variations: list,
        weights: List[float] = None,
        active: bool = True,
        coverage: float = None,
        condition: dict = None,
        namespace: Union[Namespace, Sequence, dict] = None,
        url: str = "",
        force: int = None,
        hashAttribute: str = "id",
        hashVersion: int = None,
        ranges: List[Tuple[float, float]] = None,
        meta: List[VariationMeta] = None,
        seed: str = None,
        name: str = None,
        phase: str = None,
    ) -> None:
        self.key = key
        self.variations = variations
        self.weights = weights
        self.active = active
        self.coverage = coverage
        self.condition = condition
        self.namespace = Namespace.coerce(namespace)
        self.url = url
        self.force = force
        self.hashAttribute = hashAttribute or "id"
        self.hashVersion = hashVersion or 1
        self.ranges = ranges
        self.meta = meta
        self.seed = seed
        self.name = name
        self.phase = phase

    @classmethod
    def from_rule(cls, rule: ExperimentRule, feature_key: str) -> "Experiment":
        return cls(
            key=rule.key or feature_key,
            variations=list(rule.variations),
            weights=list(rule.weights) if rule.weights is not None else None,
            coverage=rule.coverage,
            namespace=rule.namespace,
            force=rule.force,
            hashAttribute=rule.hashAttribute,
            hashVersion=rule.hashVersion,
            ranges=[list(r) for r in rule.ranges] if rule.ranges is not None else None,
            meta=list(rule.meta) if rule.meta is not None else None,
            seed=rule.seed,
            name=rule.name,
            phase=rule.phase,
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "variations": self.variations,
            "weights": self.weights,
            "active": self.active,
            "coverage": 1 if self.coverage is None else self.coverage,
            "condition": self.condition,
            "namespace": list(self.namespace) if self.namespace else None,
            "force": self.force,
            "hashAttribute": self.hashAttribute,
            "hashVersion": self.hashVersion,
            "ranges": self.ranges,
            "meta": self.meta,
            "seed": self.seed,
            "name": self.name,
            "phase": self.phase,
        }


class Result(object):
    def __init__(
        self,
        variationId: int,
        inExperiment: bool,
        value,
        hashUsed: bool,
        hashAttribute: str,
        hashValue: str,
        featureId: Optional[str] = None,
        meta: VariationMeta = None,
        bucket: float = None,
    ) -> None:
        self.variationId = variationId
        self.inExperiment = inExperiment
        self.value = value
        self.hashUsed = hashUsed
        self.hashAttribute = hashAttribute
        self.hashValue = hashValue
        self.featureId = featureId or None
        self.bucket = bucket

        self.key = str(variationId)
        self.name = ""
        self.passthrough = False
        if meta:
            self.key = meta.get("key", self.key)
            self.name = meta.get("name", "")
            self.passthrough = bool(meta.get("passthrough", False))

    def to_dict(self) -> dict:
        obj = {
            "featureId": self.featureId,
            "variationId": self.variationId,
            "inExperiment": self.inExperiment,
            "value": self.value,
            "hashUsed": self.hashUsed,
            "hashAttribute": self.hashAttribute,
            "hashValue": self.hashValue,
            "key": self.key,
        }
        if self.bucket is not None:
            obj["bucket"] = self.bucket
        if self.name:
            obj["name"] = self.name
        if self.passthrough:
            obj["passthrough"] = True
        return obj

    def __repr__(self) -> str:
        return "Result(variationId=%r, inExperiment=%r, value=%r)" % (
            self.variationId, self.inExperiment, self.value
        )


def is_truthy(value) -> bool:
    """Feature "on" semantics shared by every SDK of this protocol.

    Only ``None``, ``False``, numeric zero (and NaN) and the empty string
    are off. Empty lists and objects count as on.
    """
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value != ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == value and value != 0
    return True


class FeatureResult(object):
    def __init__(
        self,
        value,
        source: str,
        experiment: Experiment = None,
        experimentResult: Result = None,
        ruleId: str = None,
    ) -> None:
        self.value = value
        self.source = source
        self.ruleId = ruleId or None
        self.experiment = experiment
        self.experimentResult = experimentResult
        self.on = is_truthy(value)
        self.off = not self.on

    def to_dict(self) -> dict:
        data = {
            "value": self.value,
            "source": self.source,
            "on": self.on,
            "off": self.off,
        }
        if self.ruleId:
            data["ruleId"] = self.ruleId
        if self.experiment:
            data["experiment"] = self.experiment.to_dict()
        if self.experimentResult:
            data["experimentResult"] = self.experimentResult.to_dict()
        return data


@dataclass
class EvaluationContext:
    enabled: bool = True
    attributes: Dict[str, Any] = field(default_factory=dict)
    forced_variations: Dict[str, int] = field(default_factory=dict)
    qa_mode: bool = False
    url: str = ""
