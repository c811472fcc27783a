"""
Portfolio Platform
Response repair — turn raw, possibly-truncated model text into a JSON object.

Steps:
    1. strip a markdown code fence wrapping the whole response
    2. locate the object that starts at the first ``{`` with a scanner that
       tracks string-literal state, so braces inside free text are ignored
    3. when the response was cut off (stop reason ``max_tokens``) and the
       object never closes, close the open string, drop a dangling comma and
       append the missing ``]`` / ``}`` closers in nesting order
    4. ``json.loads`` the candidate

Any failure raises ResponseParseError (TruncatedResponseError when the
response was truncated). A partially decoded object is never returned.
"""

import json
import logging
import re
from dataclasses import dataclass, field

from portfolio.core.exceptions import ResponseParseError, TruncatedResponseError

logger = logging.getLogger(__name__)

_OPEN_FENCE_RE = re.compile(r"\A\s*```[a-zA-Z]*[ \t]*\n?")
_CLOSE_FENCE_RE = re.compile(r"\n?[ \t]*```\s*\Z")

_CLOSER_FOR = {"{": "}", "[": "]"}
_OPENER_FOR = {"}": "{", "]": "["}


@dataclass
class ScanResult:
    """Outcome of scanning from the first ``{``."""

    end: int | None = None
    open_stack: list[str] = field(default_factory=list)
    in_string: bool = False
    pending_escape: bool = False
    mismatched: bool = False

    @property
    def brace_delta(self) -> int:
        return len(self.open_stack)


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json line and a trailing ``` marker.

    Backtick runs elsewhere are left alone; they may sit inside string values.
    """
    text = _OPEN_FENCE_RE.sub("", text or "", count=1)
    return _CLOSE_FENCE_RE.sub("", text, count=1).strip()


def scan_object(text: str, start: int) -> ScanResult:
    """Walk ``text`` from ``start`` (a ``{``) until the object closes or text ends."""
    stack: list[str] = []
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _CLOSER_FOR:
            stack.append(ch)
        elif ch in _OPENER_FOR:
            if not stack or stack[-1] != _OPENER_FOR[ch]:
                return ScanResult(open_stack=stack, mismatched=True)
            stack.pop()
            if not stack:
                return ScanResult(end=i + 1)

    return ScanResult(open_stack=stack, in_string=in_string, pending_escape=escape)


def close_truncated(fragment: str, scan: ScanResult) -> str:
    """Append what a truncated fragment needs to balance its brackets."""
    repaired = fragment
    if scan.in_string:
        if scan.pending_escape:
            repaired = repaired[:-1]
        repaired += '"'
    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1].rstrip()
    closers = "".join(_CLOSER_FOR[opener] for opener in reversed(scan.open_stack))
    return repaired + closers


def extract_json(raw_text: str, was_truncated: bool = False, *, stop_reason: str | None = None):
    """
    Extract the JSON object contained in a model response.

    Args:
        raw_text: Complete model output (never a partial stream buffer).
        was_truncated: True when the upstream stop reason reported ``max_tokens``.
        stop_reason: Upstream stop reason, attached to diagnostics only.

    Returns:
        The decoded JSON object (a dict).

    Raises:
        ResponseParseError: No object found, or the candidate does not parse.
        TruncatedResponseError: Same, for a truncated response after repair.
    """
    error_cls = TruncatedResponseError if was_truncated else ResponseParseError
    raw_length = len(raw_text or "")
    text = strip_code_fences(raw_text)

    start = text.find("{")
    if start == -1:
        raise error_cls(
            "Model response did not contain a JSON object",
            raw_length=raw_length, was_truncated=was_truncated, stop_reason=stop_reason,
        )

    scan = scan_object(text, start)
    if scan.end is not None:
        candidate = text[start:scan.end]
    elif was_truncated and not scan.mismatched:
        candidate = close_truncated(text[start:], scan)
        logger.info(
            "Repairing truncated response: raw_length=%d closers=%d in_string=%s",
            raw_length, scan.brace_delta, scan.in_string,
        )
    else:
        end = text.rfind("}")
        if end <= start:
            raise error_cls(
                "Model response contained an unbalanced JSON object",
                raw_length=raw_length, was_truncated=was_truncated,
                brace_delta=scan.brace_delta, stop_reason=stop_reason,
            )
        candidate = text[start:end + 1]

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as exc:
        logger.warning(
            "Model response JSON parse failed: raw_length=%d truncated=%s brace_delta=%d stop_reason=%s",
            raw_length, was_truncated, scan.brace_delta, stop_reason,
        )
        raise error_cls(
            f"Model response contained malformed JSON: {exc.msg} (pos {exc.pos})",
            raw_length=raw_length, was_truncated=was_truncated,
            brace_delta=scan.brace_delta, stop_reason=stop_reason,
        ) from exc

    return value
