"""Per-question counters and the sign-bucket aware delta between answer sets.

Every answered value falls in exactly one bucket: positive, negative or
zero. A cell's ``Counters`` for a question record the total sum, the
per-bucket sums and the per-bucket respondent counts. Moving a value
between buckets must move its count and its sum together, otherwise the
counts drift away from the values they describe.

Sums are exact ``Decimal`` values at a fixed scale of six decimal places, so
the incremental path and a from-scratch rollup agree to the last digit
whatever order the values were added in.
"""

from collections.abc import Mapping
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

Answers = Mapping[str, Decimal]

VALUE_SCALE = 6
_QUANTUM = Decimal(1).scaleb(-VALUE_SCALE)
MAX_ABS_VALUE = Decimal(10) ** 12


class Bucket(StrEnum):
    """Sign bucket of an answered value."""

    POS = "pos"
    NEG = "neg"
    ZERO = "zero"


@dataclass(frozen=True)
class Counters:
    """Aggregate (or signed delta) state for one question in one cell."""

    sum: Decimal = Decimal(0)
    pos_sum: Decimal = Decimal(0)
    neg_sum: Decimal = Decimal(0)
    pos_count: int = 0
    neg_count: int = 0
    zero_count: int = 0

    def __add__(self, other: "Counters") -> "Counters":
        if not isinstance(other, Counters):
            return NotImplemented
        return Counters(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    def __sub__(self, other: "Counters") -> "Counters":
        if not isinstance(other, Counters):
            return NotImplemented
        return self + (-other)

    def __neg__(self) -> "Counters":
        return Counters(**{f.name: -getattr(self, f.name) for f in fields(self)})

    def is_zero(self) -> bool:
        """True when applying this value would change nothing."""
        return all(getattr(self, f.name) == 0 for f in fields(self))

    @property
    def respondents(self) -> int:
        """Number of respondents who answered, across all buckets."""
        return self.pos_count + self.neg_count + self.zero_count

    def as_dict(self) -> dict[str, Decimal | int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


ZERO_COUNTERS = Counters()


def coerce_value(raw: Any) -> Decimal:
    """Coerce a raw answer to a finite ``Decimal`` at the counter scale.

    Floats go through their shortest string form, so ``0.1`` becomes
    ``Decimal("0.1")``. Booleans, non-numeric input and non-finite or
    out-of-range values become 0.
    """
    if isinstance(raw, bool):
        return Decimal(0)
    try:
        if isinstance(raw, Decimal | int):
            value = Decimal(raw)
        elif isinstance(raw, float):
            value = Decimal(str(raw))
        elif isinstance(raw, str):
            value = Decimal(raw.strip())
        else:
            return Decimal(0)
        if not value.is_finite() or abs(value) >= MAX_ABS_VALUE:
            return Decimal(0)
        return value.quantize(_QUANTUM)
    except InvalidOperation:
        return Decimal(0)


def classify(value: Decimal | float) -> Bucket:
    """Sign bucket for a value."""
    if value > 0:
        return Bucket.POS
    if value < 0:
        return Bucket.NEG
    return Bucket.ZERO


def counters_for_value(value: Decimal) -> Counters:
    """Counters contributed by one respondent's answer."""
    bucket = classify(value)
    if bucket is Bucket.POS:
        return Counters(sum=value, pos_sum=value, pos_count=1)
    if bucket is Bucket.NEG:
        return Counters(sum=value, neg_sum=value, neg_count=1)
    return Counters(zero_count=1)


def counters_from_answers(answers: Answers | None) -> dict[str, Counters]:
    """From-scratch counters for a full answer set.

    Equivalent to ``delta_between({}, answers)``: the change needed to add a
    newly counted respondent to a cell.
    """
    return {question_id: counters_for_value(coerce_value(raw)) for question_id, raw in (answers or {}).items()}


def negate(counters: Mapping[str, Counters]) -> dict[str, Counters]:
    """Flip the sign of every question's counters."""
    return {question_id: -c for question_id, c in counters.items()}


def _question_delta(before: Decimal | None, after: Decimal | None) -> Counters:
    """Change to one question's counters when its answer goes from ``before`` to ``after``.

    ``None`` means the question was not answered and sits in no bucket.
    """
    if before is None and after is None:
        return ZERO_COUNTERS
    if before is None:
        return counters_for_value(after)
    if after is None:
        return -counters_for_value(before)
    if before == after:
        return ZERO_COUNTERS

    before_bucket = classify(before)
    after_bucket = classify(after)
    if before_bucket is not after_bucket:
        return counters_for_value(after) - counters_for_value(before)

    # Same bucket: only that bucket's sum moves, counts stay put
    diff = after - before
    if after_bucket is Bucket.POS:
        return Counters(sum=diff, pos_sum=diff)
    if after_bucket is Bucket.NEG:
        return Counters(sum=diff, neg_sum=diff)
    return ZERO_COUNTERS


def delta_between(old: Answers | None, new: Answers | None) -> dict[str, Counters]:
    """Minimal per-question delta turning ``Counters(old)`` into ``Counters(new)``.

    Questions whose counters would not change are omitted.
    """
    old = old or {}
    new = new or {}
    delta: dict[str, Counters] = {}
    for question_id in sorted(set(old) | set(new)):
        before = coerce_value(old[question_id]) if question_id in old else None
        after = coerce_value(new[question_id]) if question_id in new else None
        change = _question_delta(before, after)
        if not change.is_zero():
            delta[question_id] = change
    return delta


def apply_delta(base: Mapping[str, Counters], delta: Mapping[str, Counters]) -> dict[str, Counters]:
    """Add a delta to a stats mapping, dropping questions left with nothing."""
    result = dict(base)
    for question_id, change in delta.items():
        updated = result.get(question_id, ZERO_COUNTERS) + change
        if updated.is_zero():
            result.pop(question_id, None)
        else:
            result[question_id] = updated
    return result
