"""Line-number annotation for file content sent to the builder model."""

from __future__ import annotations

import re

LINE_NUM_PREFIX = "ln-"

_LINE_NUM_RE = re.compile(rf"^{re.escape(LINE_NUM_PREFIX)}\d+: ?", re.MULTILINE)


def add_line_nums(content: str) -> str:
    """Prefix every line of *content* with ``ln-<n>: `` (1-based).

    A trailing newline is preserved and does not produce an extra numbered line.
    """
    if not content:
        return content
    lines = content.split("\n")
    trailing = lines[-1] == ""
    if trailing:
        lines = lines[:-1]
    numbered = "\n".join(
        f"{LINE_NUM_PREFIX}{i}: {line}" for i, line in enumerate(lines, start=1)
    )
    return numbered + "\n" if trailing else numbered


def remove_line_nums(content: str) -> str:
    """Strip ``ln-<n>: `` prefixes a model echoed back from annotated input.

    Content is returned unchanged unless every non-blank line carries a prefix.
    """
    lines = [line for line in content.split("\n") if line.strip()]
    if not lines or not all(_LINE_NUM_RE.match(line) for line in lines):
        return content
    return _LINE_NUM_RE.sub("", content)
