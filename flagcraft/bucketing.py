import logging

from collections import abc
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger("flagcraft.bucketing")

BucketRange = Tuple[float, float]

# FNV-1a 32-bit constants
FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193
UINT32_MASK = 0xFFFFFFFF


def fnv1a32(text: str) -> int:
    hval = FNV_OFFSET_BASIS
    for char in text:
        hval ^= ord(char)
        hval = (hval * FNV_PRIME) & UINT32_MASK
    return hval


def hash_value(seed: str, value: str, version: int = 1) -> Optional[float]:
    """Map (seed, value) onto a bucket in [0, 1).

    Version 1 hashes ``value + seed`` into one of 1000 buckets. Version 2
    hashes ``seed + value`` twice into one of 10000 buckets, which spreads
    short sequential ids more evenly. Both must stay byte-for-byte
    identical to the other SDKs speaking this protocol.
    """
    if version == 1:
        return (fnv1a32(str(value) + str(seed)) % 1000) / 1000
    if version == 2:
        inner = fnv1a32(str(seed) + str(value))
        return (fnv1a32(str(inner)) % 10000) / 10000
    return None


def in_range(n: float, bucket_range: Sequence[float]) -> bool:
    return bucket_range[0] <= n < bucket_range[1]


def in_namespace(hash_input: str, namespace) -> bool:
    # The "__" prefix keeps namespace hashes independent of experiment seeds
    n = hash_value("__" + namespace[0], hash_input, 1)
    if n is None:
        return False
    return namespace[1] <= n < namespace[2]


def get_equal_weights(num_variations: int) -> List[float]:
    if num_variations < 1:
        return []
    return [1 / num_variations] * num_variations


def _is_weight(w) -> bool:
    return isinstance(w, (int, float)) and not isinstance(w, bool)


def _valid_weights(weights: Sequence[float], num_variations: int) -> bool:
    if not isinstance(weights, abc.Sequence) or len(weights) != num_variations:
        return False
    if any(not _is_weight(w) or w < 0 for w in weights):
        return False
    # Float sums of e.g. [0.1] * 10 land slightly above 1
    return sum(weights) <= 1 + 1e-6


def get_bucket_ranges(
    num_variations: int, coverage: float = 1, weights: Optional[Sequence[float]] = None
) -> List[BucketRange]:
    coverage = min(max(coverage, 0), 1)

    if weights is None:
        weights = get_equal_weights(num_variations)
    elif not _valid_weights(weights, num_variations):
        logger.warning(
            "Invalid weights %s for %d variations, using equal weights",
            weights,
            num_variations,
        )
        weights = get_equal_weights(num_variations)

    ranges = []
    start = 0.0
    for w in weights:
        ranges.append((start, start + coverage * w))
        start += w
    return ranges


def choose_from_ranges(n: float, ranges: Sequence[Sequence[float]]) -> Optional[int]:
    for i, bucket_range in enumerate(ranges):
        if in_range(n, bucket_range):
            return i
    return None


def choose_variation(
    n: float, weights: Optional[Sequence[float]], coverage: float = 1, num_variations: Optional[int] = None
) -> Optional[int]:
    """Return the variation whose scaled range contains ``n``.

    Coverage shrinks every range in place, so lowering it only ever removes
    users from an experiment, never moves them between variations. ``None``
    means ``n`` fell into an unallocated gap.
    """
    if num_variations is None:
        num_variations = len(weights or [])
    return choose_from_ranges(n, get_bucket_ranges(num_variations, coverage, weights))


def is_included_in_rollout(
    seed: str, hash_input: str, coverage: Optional[float], version: int = 1
) -> bool:
    if coverage is None:
        return True
    if hash_input == "":
        return False
    n = hash_value(seed, hash_input, version)
    if n is None:
        return False
    return n < coverage
