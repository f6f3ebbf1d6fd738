"""Executor for already-resolved operator invocations.

A pipeline is an ordered list of steps (operator name plus arguments). The
executor threads one family through the steps; each step consumes the previous
step's output. Nothing here parses expression text.
"""
import inspect
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from meteranalyzer import histogram, operators, rate
from meteranalyzer.errors import ValidationError
from meteranalyzer.family import Family
from meteranalyzer.lookback import InMemoryLookbackResolver, LookbackMissPolicy, LookbackResolver
from meteranalyzer.rewrite import rewrite_from_dict, rewrite_from_list

logger = logging.getLogger(__name__)

# Resolves {"metric": name} references to other families
FamilyLookup = Callable[[str], Family]

# Step index -> history of the samples that reached that step
StepHistory = Callable[[int], InMemoryLookbackResolver]


@dataclass(frozen=True)
class Step:
    """One operator invocation."""
    op: str
    args: Sequence[Any] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class EvaluationContext:
    """Collaborators a pipeline needs beyond the family itself.

    With ``history`` set, each rate-style step looks up and records its own
    input series, so a rate after ``multiply`` or ``sum`` compares like with
    like. Otherwise every rate-style step asks the shared ``resolver``.
    """
    resolver: Optional[LookbackResolver] = None
    miss_policy: LookbackMissPolicy = LookbackMissPolicy.SELF
    families: Optional[FamilyLookup] = None
    history: Optional[StepHistory] = None
    step: int = 0


def _operand(value, ctx: EvaluationContext):
    """Turn a ``{"metric": name}`` argument into that family; numbers pass through."""
    if isinstance(value, Mapping) and "metric" in value:
        if ctx.families is None:
            raise ValidationError(f"No family source to resolve {value!r}")
        return ctx.families(value["metric"])
    return value


def _rewrite(value):
    if callable(value):
        return value
    if isinstance(value, Mapping):
        return rewrite_from_dict(value)
    if isinstance(value, (list, tuple)):
        return rewrite_from_list(value)
    raise ValidationError(f"Cannot build a label rewrite from {value!r}")


def _binary(fn):
    def run(family, ctx, *args):
        if len(args) != 1:
            raise ValidationError(f"{fn.__name__} takes exactly one operand, got {len(args)}")
        return fn(family, _operand(args[0], ctx))
    return run


def _filter(fn):
    def run(family, ctx, *args):
        return fn(family, *args)
    return run


def _sum(family, ctx, by=None):
    return operators.sum_by(family, by)


def _tag(family, ctx, *args, **kwargs):
    if kwargs:
        return operators.tag(family, _rewrite(dict(kwargs)))
    if len(args) == 1:
        return operators.tag(family, _rewrite(args[0]))
    return operators.tag(family, _rewrite(list(args)))


def _resolver(ctx: EvaluationContext) -> Optional[LookbackResolver]:
    if ctx.history is not None:
        return ctx.history(ctx.step)
    return ctx.resolver


def _remember(ctx: EvaluationContext, family: Family):
    # After the lookup, so a sample never serves as its own baseline
    if ctx.history is not None and not family.is_empty:
        ctx.history(ctx.step).record_all(family.samples)


def _increase(family, ctx, range_):
    result = rate.increase(family, range_, _resolver(ctx), ctx.miss_policy)
    _remember(ctx, family)
    return result


def _rate(family, ctx, range_):
    result = rate.rate(family, range_, _resolver(ctx), ctx.miss_policy)
    _remember(ctx, family)
    return result


def _irate(family, ctx):
    result = rate.irate(family, _resolver(ctx), ctx.miss_policy)
    _remember(ctx, family)
    return result


def _histogram(family, ctx, le=histogram.BOUND_LABEL, unit=None):
    return histogram.histogram(family, le, unit)


def _histogram_percentile(family, ctx, percentiles):
    return histogram.histogram_percentile(family, percentiles)


def _negative(family, ctx):
    return operators.negative(family)


OPERATORS: Dict[str, Callable[..., Family]] = {
    "tagEqual": _filter(operators.tag_equal),
    "tagNotEqual": _filter(operators.tag_not_equal),
    "tagMatch": _filter(operators.tag_match),
    "tagNotMatch": _filter(operators.tag_not_match),
    "plus": _binary(operators.plus),
    "minus": _binary(operators.minus),
    "multiply": _binary(operators.multiply),
    "div": _binary(operators.div),
    "negative": _negative,
    "sum": _sum,
    "tag": _tag,
    "increase": _increase,
    "rate": _rate,
    "irate": _irate,
    "histogram": _histogram,
    "histogram_percentile": _histogram_percentile,
}


def run_pipeline(family: Family, steps: Sequence[Step], ctx: Optional[EvaluationContext] = None) -> Family:
    """Run ``steps`` in order; the first failing step aborts the whole pipeline."""
    ctx = ctx or EvaluationContext()
    for index, step in enumerate(steps):
        operator = OPERATORS.get(step.op)
        if operator is None:
            raise ValidationError(f"Unknown operator '{step.op}'. Available: {sorted(OPERATORS)}")
        kwargs = dict(step.kwargs)
        try:
            inspect.signature(operator).bind(family, ctx, *step.args, **kwargs)
        except TypeError as e:
            raise ValidationError(f"Bad arguments for '{step.op}' (step {index}): {e}") from e
        family = operator(family, replace(ctx, step=index), *step.args, **kwargs)
        logger.debug(f"Step {index} '{step.op}' produced {len(family)} samples")
    return family

