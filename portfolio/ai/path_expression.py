"""
Section path expressions.

Grammar::

    path    := segment ("." segment)*
    segment := key | key "[" index "]"
    key     := [A-Za-z_][A-Za-z0-9_]*
    index   := non-negative decimal integer

``quick_wins[2].title`` parses once into
``(KeyStep("quick_wins"), IndexStep(2), KeyStep("title"))``. Parsed paths are
cached and immutable; the first key must name a canonical document field.
"""

import re
from dataclasses import dataclass
from functools import lru_cache

from portfolio.ai.result_mapper import CANONICAL_FIELD_NAMES
from portfolio.core.exceptions import PathResolutionError

_SEGMENT_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)(?:\[(\d+)\])?$")


@dataclass(frozen=True)
class KeyStep:
    key: str

    def __str__(self):
        return self.key


@dataclass(frozen=True)
class IndexStep:
    index: int

    def __str__(self):
        return f"[{self.index}]"


Step = KeyStep | IndexStep


@lru_cache(maxsize=512)
def parse(path: str) -> tuple[Step, ...]:
    """Parse ``path`` into steps. Raises PathResolutionError if malformed."""
    if not isinstance(path, str) or not path.strip():
        raise PathResolutionError(str(path), "path is empty")

    steps: list[Step] = []
    for segment in path.split("."):
        match = _SEGMENT_RE.match(segment)
        if not match:
            raise PathResolutionError(path, f"malformed segment {segment!r}")
        steps.append(KeyStep(match.group(1)))
        if match.group(2) is not None:
            steps.append(IndexStep(int(match.group(2))))

    root = steps[0].key
    if root not in CANONICAL_FIELD_NAMES:
        raise PathResolutionError(path, f"{root!r} is not a document section")
    return tuple(steps)


def render(steps: tuple[Step, ...]) -> str:
    """Inverse of parse()."""
    out = ""
    for step in steps:
        if isinstance(step, KeyStep):
            out += f".{step.key}" if out else step.key
        else:
            out += str(step)
    return out
