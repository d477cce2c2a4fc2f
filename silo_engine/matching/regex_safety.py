"""
Guards for user-authored regular expressions.

Regex rules run on every navigation, and Python's ``re`` engine backtracks.
Two layers keep a single rule from stalling resolution:

1. :func:`screen_regex` rejects, at compile time, the pattern shapes that cause
   catastrophic backtracking: an unbounded repetition nested inside another
   repetition (``(a+)+``, ``(.*)*``, ``(\\w+\\s?)*``) and repeated groups that
   contain backreferences. Repeated alternations are rejected unless every
   branch starts with its own required literal, so ``(a|ab)*c`` is refused while
   ``(?:www\\.|m\\.)*`` passes. A repeated group is accepted when it contains a
   required literal that none of its inner repetitions can consume, as in
   ``([a-z0-9-]+\\.)*example\\.com``; the literal pins each iteration. Over-long
   patterns are rejected too.
2. :func:`timed_match` measures each evaluation with a :class:`Clock` and raises
   :class:`PatternEvaluationTimeout` when the budget is exceeded. The resolver
   contains that error and treats the rule as non-matching. ``re`` cannot be
   interrupted, so this check runs after the match returns; the screen is what
   keeps a match from running away.

The screen is syntactic and conservative. It may reject a few patterns that
would in fact run in linear time; the rule editor reports the reason.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from ..clock import Clock
from ..errors import PatternEvaluationTimeout

DEFAULT_MAX_REGEX_LENGTH = 1024
DEFAULT_TIME_BUDGET_SECONDS = 0.05

_BRACE_QUANTIFIER = re.compile(r"\{(\d*)(?:(,)(\d*))?\}")
_INLINE_FLAGS = set("aiLmsux-")
_NON_LITERAL_CHARS = set(".^$|")


@dataclass(slots=True)
class _GroupFrame:
    start: int
    unbounded_atoms: list[str] = field(default_factory=list)
    literals: set[str] = field(default_factory=set)
    alternation: bool = False
    backref: bool = False
    heads: list[str | None] = field(default_factory=list)
    branch_open: bool = True
    nested_ambiguity: bool = False

    def required_literals(self) -> set[str]:
        return set() if self.alternation else self.literals

    def note_head(self, literal: str | None) -> None:
        """Record the leading literal of the current branch (None if it has none)."""
        if self.branch_open:
            self.heads.append(literal)
            self.branch_open = False

    def next_branch(self) -> None:
        self.note_head(None)
        self.alternation = True
        self.branch_open = True

    def ambiguous(self) -> bool:
        """True when two branches may start on the same character."""
        if self.nested_ambiguity:
            return True
        if not self.alternation:
            return False
        return None in self.heads or len(set(self.heads)) != len(self.heads)


def _read_quantifier(pattern: str, i: int) -> tuple[int, float, int]:
    """
    Read a quantifier starting at ``i``.

    Returns
    -------
    tuple[int, float, int]
        (minimum, maximum, index after the quantifier). Without a quantifier
        this is ``(1, 1, i)``; unbounded maxima are ``math.inf``.
    """
    if i >= len(pattern):
        return 1, 1, i
    ch = pattern[i]
    if ch == "*":
        low, high = 0, math.inf
        i += 1
    elif ch == "+":
        low, high = 1, math.inf
        i += 1
    elif ch == "?":
        low, high = 0, 1
        i += 1
    elif ch == "{":
        m = _BRACE_QUANTIFIER.match(pattern, i)
        if m is None or (not m.group(1) and not m.group(2)):
            return 1, 1, i
        low = int(m.group(1) or 0)
        if m.group(2) is None:
            high = low
        elif m.group(3):
            high = int(m.group(3))
        else:
            high = math.inf
        i = m.end()
    else:
        return 1, 1, i
    # Lazy or possessive suffix.
    if i < len(pattern) and pattern[i] in "?+":
        i += 1
    return low, high, i


def _skip_class(pattern: str, i: int) -> int:
    """Return the index just after the character class opening at ``i``."""
    j = i + 1
    if j < len(pattern) and pattern[j] == "^":
        j += 1
    if j < len(pattern) and pattern[j] == "]":
        j += 1
    while j < len(pattern):
        if pattern[j] == "\\":
            j += 2
            continue
        if pattern[j] == "]":
            return j + 1
        j += 1
    return j


def _open_group(pattern: str, i: int) -> tuple[str, int]:
    """
    Classify the construct opening at ``pattern[i] == '('``.

    Returns
    -------
    tuple[str, int]
        (kind, index of the first char of the group body). ``kind`` is one of
        ``"group"`` (pushes a frame), ``"backref"`` (``(?P=name)``, an atom) or
        ``"skip"`` (comments and global inline flags, no frame).
    """
    j = i + 1
    if j >= len(pattern) or pattern[j] != "?":
        return "group", j
    rest = pattern[j + 1 :]
    if rest.startswith("P="):
        return "backref", pattern.index(")", j) + 1
    if rest.startswith("#"):
        return "skip", pattern.index(")", j) + 1
    if rest.startswith(("<=", "<!")):
        return "group", j + 3
    if rest.startswith(("P<", "<")):
        return "group", pattern.index(">", j) + 1
    if rest.startswith("("):
        return "group", pattern.index(")", j) + 1
    if rest[:1] in (":", "=", "!", ">"):
        return "group", j + 2
    k = j + 1
    while k < len(pattern) and pattern[k] in _INLINE_FLAGS:
        k += 1
    if k < len(pattern) and pattern[k] == ")":
        return "skip", k + 1
    return "group", k + 1


def _literal_of(atom: str) -> str | None:
    """Return the single literal character an atom stands for, if any."""
    if len(atom) == 1 and atom not in _NON_LITERAL_CHARS:
        return atom.lower()
    if len(atom) == 2 and atom[0] == "\\" and not atom[1].isalnum():
        return atom[1].lower()
    return None


def _can_consume(atom: str, literal: str) -> bool:
    try:
        return re.fullmatch(atom, literal, re.IGNORECASE) is not None
    except re.error:
        return True


def _is_pinned(frame: _GroupFrame) -> bool:
    """True when some required literal cannot be eaten by any inner repetition."""
    return any(
        not any(_can_consume(atom, lit) for atom in frame.unbounded_atoms)
        for lit in frame.required_literals()
    )


def find_backtracking_hazard(pattern: str) -> str | None:
    """
    Look for repetition shapes that can backtrack exponentially.

    Parameters
    ----------
    pattern:
        A pattern that already compiles with ``re``.

    Returns
    -------
    str | None
        A human-readable reason, or None when no hazard was found.
    """
    stack: list[_GroupFrame] = [_GroupFrame(start=0)]
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        atom_start = i

        if ch == "(":
            kind, body = _open_group(pattern, i)
            if kind == "group":
                stack[-1].note_head(None)
                stack.append(_GroupFrame(start=i))
                i = body
                continue
            if kind == "skip":
                i = body
                continue
            stack[-1].backref = True
            stack[-1].note_head(None)
            _, high, i = _read_quantifier(pattern, body)
            if high > 1:
                return "a backreference must not be repeated"
            continue

        if ch == ")" and len(stack) > 1:
            frame = stack.pop()
            if frame.alternation:
                frame.note_head(None)
            group_text = pattern[frame.start : i + 1]
            low, high, i = _read_quantifier(pattern, i + 1)
            if high > 1 and frame.backref:
                return "a repeated group must not contain a backreference"
            if high > 1 and frame.unbounded_atoms and not _is_pinned(frame):
                return (
                    "nested quantifiers (a repeated group containing '*', '+' or '{n,}') "
                    "can backtrack catastrophically"
                )
            if high > 1 and frame.ambiguous():
                return (
                    "a repeated alternation whose branches can start with the same character "
                    "can backtrack catastrophically"
                )
            parent = stack[-1]
            parent.unbounded_atoms.extend(frame.unbounded_atoms)
            if high == math.inf:
                parent.unbounded_atoms.append(group_text)
            if low >= 1:
                parent.literals |= frame.required_literals()
            parent.backref = parent.backref or frame.backref
            parent.nested_ambiguity = parent.nested_ambiguity or frame.ambiguous()
            continue

        if ch == "|":
            stack[-1].next_branch()
            i += 1
            continue

        if ch == "\\":
            nxt = pattern[i + 1 : i + 2]
            if nxt.isdigit() and nxt != "0":
                stack[-1].backref = True
            end = i + 2
        elif ch == "[":
            end = _skip_class(pattern, i)
        else:
            end = i + 1

        atom = pattern[atom_start:end]
        low, high, i = _read_quantifier(pattern, end)
        if high == math.inf:
            stack[-1].unbounded_atoms.append(atom)
        literal = _literal_of(atom)
        stack[-1].note_head(literal if low >= 1 else None)
        if literal is not None and low >= 1:
            stack[-1].literals.add(literal)
    return None


def screen_regex(pattern: str, *, max_length: int = DEFAULT_MAX_REGEX_LENGTH) -> str | None:
    """
    Return a rejection reason for an unsafe regex, or None when it is acceptable.

    Parameters
    ----------
    pattern:
        A pattern that already compiles with ``re``.
    max_length:
        Maximum accepted pattern length in characters.
    """
    if len(pattern) > max_length:
        return f"regular expression is longer than {max_length} characters"
    try:
        return find_backtracking_hazard(pattern)
    except ValueError:
        # Unbalanced constructs, e.g. inside verbose-mode comments.
        return "regular expression could not be checked for backtracking"


def timed_match(
    compiled: re.Pattern[str],
    subject: str,
    *,
    clock: Clock,
    budget: float,
) -> bool:
    """
    Evaluate ``compiled`` against ``subject`` under a time budget.

    Raises
    ------
    PatternEvaluationTimeout
        If the evaluation took longer than ``budget`` seconds. The result is
        discarded so a slow rule never routes.
    """
    start = clock.monotonic()
    matched = compiled.search(subject) is not None
    elapsed = clock.monotonic() - start
    if elapsed > budget:
        raise PatternEvaluationTimeout(compiled.pattern, elapsed=elapsed, budget=budget)
    return matched
