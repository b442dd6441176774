import logging
import re

from urllib.parse import parse_qs, urlparse
from typing import Any, Callable, Mapping, Optional, Tuple

from .bucketing import (
    choose_from_ranges,
    get_bucket_ranges,
    hash_value,
    in_namespace,
    is_included_in_rollout,
)
from .common_types import (
    EvaluationContext,
    Experiment,
    FeatureResult,
    ForceRule,
    Result,
)
from .conditions import eval_condition, get_path
from .store import FeatureStore

logger = logging.getLogger("flagcraft.core")

TrackingHook = Callable[[Experiment, Result], None]


def stringify(value) -> str:
    # Must render values the way the other SDKs do before hashing
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def get_hash_value(attr: str, attributes: Mapping) -> Tuple[str, Any]:
    attr = attr or "id"
    value = get_path(attributes, attr)
    return attr, ("" if value is None else value)


def get_query_string_override(key: str, url: str, num_variations: int) -> Optional[int]:
    if not url:
        return None
    query = urlparse(url).query
    if not query:
        return None
    values = parse_qs(query).get(key)
    if not values or not values[0].isdigit():
        return None
    variation = int(values[0])
    if variation >= num_variations:
        return None
    return variation


def url_is_targeted(url: str, pattern: str) -> bool:
    if not url:
        return False
    try:
        compiled = re.compile(pattern)
    except re.error:
        logger.warning("Invalid url targeting pattern %r", pattern)
        return True
    if compiled.search(url):
        return True
    path_only = re.sub(r"^[^/]*/", "/", re.sub(r"^https?://", "", url))
    return compiled.search(path_only) is not None


def _control(experiment: Experiment, context: EvaluationContext, feature_id: Optional[str]) -> Result:
    return _build_result(experiment, context, -1, feature_id=feature_id)


def _build_result(
    experiment: Experiment,
    context: EvaluationContext,
    variation_id: int,
    hash_used: bool = False,
    feature_id: Optional[str] = None,
    bucket: Optional[float] = None,
) -> Result:
    in_experiment = True
    if (
        not isinstance(variation_id, int)
        or isinstance(variation_id, bool)
        or not 0 <= variation_id < len(experiment.variations or [])
    ):
        variation_id = 0
        in_experiment = False

    meta = None
    if experiment.meta and variation_id < len(experiment.meta):
        meta = experiment.meta[variation_id]

    hash_attribute, hash_input = get_hash_value(experiment.hashAttribute, context.attributes)

    return Result(
        variationId=variation_id,
        inExperiment=in_experiment,
        value=experiment.variations[variation_id] if experiment.variations else None,
        hashUsed=hash_used,
        hashAttribute=hash_attribute,
        hashValue=hash_input,
        featureId=feature_id,
        meta=meta,
        bucket=bucket,
    )


def run_experiment(
    experiment: Experiment,
    context: EvaluationContext,
    saved_groups: Optional[Mapping] = None,
    feature_id: Optional[str] = None,
    tracking_cb: Optional[TrackingHook] = None,
) -> Result:
    result, report = _run(experiment, context, saved_groups, feature_id)
    if report and tracking_cb:
        tracking_cb(experiment, result)
    return result


def _run(
    experiment: Experiment,
    context: EvaluationContext,
    saved_groups: Optional[Mapping],
    feature_id: Optional[str],
) -> Tuple[Result, bool]:
    key = experiment.key

    # 1. Need at least two variations to split traffic
    if len(experiment.variations or []) < 2:
        logger.warning("Experiment %s has less than 2 variations, skip", key)
        return _control(experiment, context, feature_id), False
    # 2. Global kill switch
    if not context.enabled:
        logger.debug("Skip experiment %s because evaluation is disabled", key)
        return _control(experiment, context, feature_id), False
    # 3. Inactive experiment
    if not experiment.active:
        logger.debug("Experiment %s is not active, skip", key)
        return _control(experiment, context, feature_id), False
    # 4. Targeting condition
    if experiment.condition and not eval_condition(context.attributes, experiment.condition, saved_groups):
        logger.debug("Skip experiment %s because user failed the condition", key)
        return _control(experiment, context, feature_id), True
    # 5. Url targeting
    if experiment.url and not url_is_targeted(context.url, experiment.url):
        logger.debug("Skip experiment %s because current url is not targeted", key)
        return _control(experiment, context, feature_id), True

    # 6. Querystring preview, never reported
    qs = get_query_string_override(key, context.url, len(experiment.variations))
    if qs is not None:
        logger.debug("Force variation %d from url querystring, experiment %s", qs, key)
        return _build_result(experiment, context, qs, feature_id=feature_id), False

    # 7. Forced in the evaluation context
    forced = context.forced_variations.get(key)
    if forced is not None:
        logger.debug("Force variation %s from context, experiment %s", forced, key)
        return _build_result(experiment, context, forced, feature_id=feature_id), True

    # 8. QA mode never assigns randomly
    if context.qa_mode:
        logger.debug("Skip experiment %s because of QA mode", key)
        return _control(experiment, context, feature_id), True

    # 9. Hash attribute
    _, raw_value = get_hash_value(experiment.hashAttribute, context.attributes)
    hash_input = stringify(raw_value)
    if not hash_input:
        logger.debug("Skip experiment %s because user's %s is empty", key, experiment.hashAttribute)
        return _control(experiment, context, feature_id), True

    # 10. Namespace
    if experiment.namespace and not in_namespace(hash_input, experiment.namespace):
        logger.debug("Skip experiment %s because of namespace", key)
        return _control(experiment, context, feature_id), True

    # 11. Bucket
    n = hash_value(experiment.seed or key, hash_input, experiment.hashVersion)
    if n is None:
        logger.warning("Skip experiment %s because of invalid hashVersion %s", key, experiment.hashVersion)
        return _control(experiment, context, feature_id), True

    # 12. Choose a variation
    coverage = 1 if experiment.coverage is None else experiment.coverage
    ranges = experiment.ranges or get_bucket_ranges(len(experiment.variations), coverage, experiment.weights)
    assigned = choose_from_ranges(n, ranges)
    if assigned is None:
        logger.debug("Skip experiment %s because user is not included in the rollout", key)
        return _control(experiment, context, feature_id), True

    # 13. Experiment-level force overrides the random pick
    if experiment.force is not None:
        logger.debug("Force variation %s in experiment %s", experiment.force, key)
        return _build_result(experiment, context, experiment.force, feature_id=feature_id), True

    logger.debug("Assigned variation %d in experiment %s", assigned, key)
    return _build_result(experiment, context, assigned, hash_used=True, feature_id=feature_id, bucket=n), True


def _apply_force_rule(key: str, rule: ForceRule, context: EvaluationContext) -> bool:
    _, raw_value = get_hash_value(rule.hashAttribute, context.attributes)
    return is_included_in_rollout(
        seed=rule.seed or key,
        hash_input=stringify(raw_value),
        coverage=rule.coverage,
        version=rule.hashVersion,
    )


def eval_feature(
    key: str,
    context: EvaluationContext,
    store: FeatureStore,
    tracking_cb: Optional[TrackingHook] = None,
) -> FeatureResult:
    feature = store.get(key)
    if feature is None:
        logger.warning("Unknown feature %s", key)
        return FeatureResult(None, "unknownFeature")

    saved_groups = store.saved_groups

    for rule in feature.rules:
        if rule.condition and not eval_condition(context.attributes, rule.condition, saved_groups):
            logger.debug("Skip rule because of failed condition, feature %s", key)
            continue

        if rule.kind == "force":
            if not _apply_force_rule(key, rule, context):
                logger.debug("Skip rule because user not included in rollout, feature %s", key)
                continue
            logger.debug("Force value from rule, feature %s", key)
            return FeatureResult(rule.value, "force", ruleId=rule.id)

        elif rule.kind == "experiment":
            exp = Experiment.from_rule(rule, key)
            result = run_experiment(
                exp, context, saved_groups=saved_groups, feature_id=key, tracking_cb=tracking_cb
            )
            if not result.inExperiment:
                logger.debug("Skip rule because user not included in experiment, feature %s", key)
                continue
            logger.debug("Assign value from experiment, feature %s", key)
            return FeatureResult(result.value, "experiment", exp, result, ruleId=rule.id)

        else:
            logger.warning("Skip rule of unknown kind %r, feature %s", getattr(rule, "kind", None), key)

    logger.debug("Use default value for feature %s", key)
    return FeatureResult(feature.defaultValue, "defaultValue")
