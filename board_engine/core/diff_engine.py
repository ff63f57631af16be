"""Block-level diff engine for document changes.

Computes a shortest edit script between two sequences of text blocks with the
greedy O(ND) algorithm, then derives from it:

- a non-destructive annotation set (inserted blocks are marked, deleted blocks
  become inline annotations anchored before the next surviving block), and
- a reveal cursor that exposes a proposed after-version one block per tick.

Blocks are one per paragraph / heading / preformatted unit of the document's
HTML content. Plain text falls back to one block per line.
"""

import re
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Literal

from bs4 import BeautifulSoup

from board_engine.core.schemas_chat2edit import ChangeStats, DocumentChange

OpKind = Literal["equal", "insert", "delete"]

BLOCK_SELECTOR = "p, pre, blockquote p, h1, h2, h3, h4, h5, h6"


@dataclass(frozen=True)
class DiffOp:
    """One edit-script step carrying a single block."""

    op: OpKind
    value: str


@dataclass(frozen=True)
class DiffAnnotation:
    """Decoration for the live after-document.

    ``insert`` annotations point at ``block_index`` in the after sequence.
    ``delete`` annotations carry the removed ``text`` and render immediately
    before the after-block at ``anchor_index`` (or at the end when the anchor
    equals the after length).
    """

    kind: Literal["insert", "delete"]
    block_index: int | None = None
    anchor_index: int | None = None
    text: str = ""


# =========================
# Shortest edit script
# =========================


def myers_diff(
    a: Sequence[str],
    b: Sequence[str],
    equals: Callable[[str, str], bool] | None = None,
) -> list[DiffOp]:
    """
    Compute the shortest edit script turning ``a`` into ``b``.

    For each edit distance ``d`` the furthest x reached on every diagonal
    ``k = x - y`` is recorded; a step moves down (insert) when ``k == -d`` or
    when the diagonal above reaches further, otherwise right (delete), and is
    followed by the diagonal snake of equal blocks. The recorded history is
    walked back from ``(len(a), len(b))`` once both sequences are consumed.

    Args:
        a: Before blocks
        b: After blocks
        equals: Optional block comparison (defaults to ``==``)

    Returns:
        Ordered ops; replaying them against ``a`` yields exactly ``b``
    """
    eq = equals or (lambda x, y: x == y)
    n, m = len(a), len(b)
    max_d = n + m
    if max_d == 0:
        return []

    offset = max_d
    v = [0] * (2 * max_d + 2)
    trace: list[list[int]] = []

    for d in range(max_d + 1):
        trace.append(list(v))
        for k in range(-d, d + 1, 2):
            if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
                x = v[offset + k + 1]
            else:
                x = v[offset + k - 1] + 1
            y = x - k
            while x < n and y < m and eq(a[x], b[y]):
                x += 1
                y += 1
            v[offset + k] = x
            if x >= n and y >= m:
                return _backtrack(trace, a, b, offset)

    # Unreachable: d == n + m always consumes both sequences
    return _backtrack(trace, a, b, offset)


def _backtrack(trace: list[list[int]], a: Sequence[str], b: Sequence[str], offset: int) -> list[DiffOp]:
    x, y = len(a), len(b)
    ops: list[DiffOp] = []

    for d in range(len(trace) - 1, -1, -1):
        v = trace[d]
        k = x - y
        if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
            prev_k = k + 1
        else:
            prev_k = k - 1
        prev_x = v[offset + prev_k]
        prev_y = prev_x - prev_k

        while x > prev_x and y > prev_y:
            ops.append(DiffOp("equal", b[y - 1]))
            x -= 1
            y -= 1

        if d == 0:
            break

        if x == prev_x:
            ops.append(DiffOp("insert", b[y - 1]))
            y -= 1
        else:
            ops.append(DiffOp("delete", a[x - 1]))
            x -= 1

    ops.reverse()
    return ops


def apply_ops(before: Sequence[str], ops: Sequence[DiffOp]) -> list[str]:
    """
    Replay an edit script against ``before``.

    Raises:
        ValueError: If an equal/delete op does not match the next before block,
            or if before blocks remain unconsumed
    """
    result: list[str] = []
    i = 0
    for op in ops:
        if op.op == "insert":
            result.append(op.value)
            continue
        if i >= len(before) or before[i] != op.value:
            raise ValueError(f"{op.op} op does not match before block {i}")
        if op.op == "equal":
            result.append(op.value)
        i += 1
    if i != len(before):
        raise ValueError(f"edit script left {len(before) - i} before blocks unconsumed")
    return result


def summarize_ops(ops: Sequence[DiffOp]) -> ChangeStats:
    stats = ChangeStats()
    for op in ops:
        if op.op == "insert":
            stats.inserted += 1
        elif op.op == "delete":
            stats.deleted += 1
        else:
            stats.unchanged += 1
    return stats


# =========================
# Block extraction
# =========================


def html_to_blocks(html: str | None) -> list[str]:
    """
    Split document content into line-granular blocks.

    One block per paragraph, heading or preformatted element, trailing
    whitespace stripped. Content without block elements is split on newlines.
    """
    raw = (html or "").strip()
    if not raw:
        return []

    soup = BeautifulSoup(raw, "html.parser")
    elements = soup.select(BLOCK_SELECTOR)
    if elements:
        return [el.get_text().rstrip() for el in elements]

    text = soup.get_text()
    return [line.rstrip() for line in re.split(r"\r?\n", text)]


def diff_content(before_html: str | None, after_html: str | None) -> list[DiffOp]:
    return myers_diff(html_to_blocks(before_html), html_to_blocks(after_html))


def summarize_change(change: DocumentChange) -> ChangeStats:
    return summarize_ops(diff_content(change.content_before, change.content_after))


# =========================
# Consumers
# =========================


def build_diff_annotations(before_html: str | None, after_html: str | None) -> list[DiffAnnotation]:
    """
    Build the decoration set for showing a change over the after-document.

    Neither input is modified; blank deleted blocks produce no annotation.
    """
    ops = diff_content(before_html, after_html)
    annotations: list[DiffAnnotation] = []
    after_index = 0
    for op in ops:
        if op.op == "equal":
            after_index += 1
        elif op.op == "insert":
            annotations.append(DiffAnnotation(kind="insert", block_index=after_index))
            after_index += 1
        elif op.value.strip():
            annotations.append(DiffAnnotation(kind="delete", anchor_index=after_index, text=op.value))
    return annotations


class RevealCursor:
    """Animate adoption of an after-version one block per tick.

    The visible sequence is the after-blocks revealed so far followed by the
    before-blocks not yet passed. It starts equal to ``before`` and ends equal
    to ``after``; deleted blocks disappear as the cursor passes them.
    """

    def __init__(self, before: Sequence[str], after: Sequence[str]):
        self._ops = myers_diff(before, after)
        self._pos = 0
        self._revealed: list[str] = []

    @property
    def done(self) -> bool:
        return self._pos >= len(self._ops)

    def current(self) -> list[str]:
        pending = [op.value for op in self._ops[self._pos :] if op.op != "insert"]
        return self._revealed + pending

    def tick(self) -> list[str]:
        """Reveal the next after-block (dropping any deletes before it)."""
        while self._pos < len(self._ops):
            op = self._ops[self._pos]
            self._pos += 1
            if op.op == "delete":
                continue
            self._revealed.append(op.value)
            break
        # Trailing deletes vanish with the last tick
        if all(op.op == "delete" for op in self._ops[self._pos :]):
            self._pos = len(self._ops)
        return self.current()


def iter_reveal(before: Sequence[str], after: Sequence[str]) -> Iterator[list[str]]:
    """Yield every frame of a reveal, ending with ``after``."""
    cursor = RevealCursor(before, after)
    while not cursor.done:
        yield cursor.tick()
