"""Label rewrite capability used by the ``tag`` operator.

A rewrite is any callable that takes a mutable copy of a sample's labels and
either returns a replacement mapping or returns ``None`` after editing the
copy in place. The instruction classes below cover the common cases so that
rewrites can also be declared in configuration.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from meteranalyzer.errors import ValidationError

LabelRewrite = Callable[[Dict[str, str]], Optional[Mapping[str, str]]]


def apply_rewrite(rewrite: LabelRewrite, labels: Mapping[str, str]) -> Dict[str, str]:
    """Run ``rewrite`` on a copy of ``labels`` and validate what comes back."""
    copy = dict(labels)
    result = rewrite(copy)
    if result is None:
        result = copy
    elif not isinstance(result, Mapping):
        raise ValidationError(
            f"Label rewrite must return a mapping or None, got {type(result).__name__}"
        )

    for key, value in result.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValidationError(f"Label rewrite produced a non-string label: {key!r}={value!r}")
    return dict(result)


@dataclass(frozen=True)
class SetLabel:
    """Set ``key`` to a fixed value."""
    key: str
    value: str

    def __call__(self, labels: Dict[str, str]) -> None:
        labels[self.key] = self.value


@dataclass(frozen=True)
class CopyLabel:
    """Copy the value of ``source`` into ``target`` when ``source`` is present."""
    source: str
    target: str

    def __call__(self, labels: Dict[str, str]) -> None:
        if self.source in labels:
            labels[self.target] = labels[self.source]


@dataclass(frozen=True)
class RenameLabel:
    """Move ``source`` to ``target`` when ``source`` is present."""
    source: str
    target: str

    def __call__(self, labels: Dict[str, str]) -> None:
        if self.source in labels:
            labels[self.target] = labels.pop(self.source)


@dataclass(frozen=True)
class DropLabel:
    key: str

    def __call__(self, labels: Dict[str, str]) -> None:
        labels.pop(self.key, None)


class RewriteChain:
    """Apply several rewrites in order to the same label copy."""

    def __init__(self, *steps: LabelRewrite):
        self.steps: Tuple[LabelRewrite, ...] = steps

    def __call__(self, labels: Dict[str, str]) -> Dict[str, str]:
        for step in self.steps:
            labels = apply_rewrite(step, labels)
        return labels

    def __eq__(self, other) -> bool:
        return isinstance(other, RewriteChain) and self.steps == other.steps

    def __repr__(self) -> str:
        return f"RewriteChain{self.steps!r}"


_ACTIONS = {
    "set": (SetLabel, ("key", "value")),
    "copy": (CopyLabel, ("source", "target")),
    "rename": (RenameLabel, ("source", "target")),
    "drop": (DropLabel, ("key",)),
}


def rewrite_from_dict(instruction: Mapping[str, Any]) -> LabelRewrite:
    """Build a rewrite instruction from a config dictionary.

    Example: ``{"action": "set", "key": "layer", "value": "GENERAL"}``.
    """
    action = instruction.get("action")
    if action not in _ACTIONS:
        raise ValidationError(f"Unknown label rewrite action: {action!r}")

    cls, fields = _ACTIONS[action]
    missing = [name for name in fields if name not in instruction]
    if missing:
        raise ValidationError(f"Label rewrite '{action}' is missing {missing}")
    return cls(*(str(instruction[name]) for name in fields))


def rewrite_from_list(instructions) -> LabelRewrite:
    """Build a chain from a list of config dictionaries."""
    return RewriteChain(*(rewrite_from_dict(instruction) for instruction in instructions))
