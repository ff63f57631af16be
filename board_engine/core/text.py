"""Small text helpers shared by reply post-processing stages."""

import re

CJK_RE = re.compile(r"[一-鿿]")


def is_chinese_text(text: str | None) -> bool:
    """True when the text contains CJK ideographs (selects localized notes)."""
    return bool(CJK_RE.search(text or ""))


def append_note(reply: str, note: str | None) -> str:
    """Append a note as its own paragraph."""
    if not note:
        return reply
    return f"{reply}\n\n{note}" if reply else note
