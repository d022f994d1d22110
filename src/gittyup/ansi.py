"""ANSI escape sequences to styled console segments.

Process output from the sandbox arrives with terminal color codes. rich
already knows how to parse them, so this module only flattens rich's span
list into the ``Segment`` tuples the session log stores.
"""

from __future__ import annotations

from rich.style import Style
from rich.text import Text

from gittyup.session.state import ConsoleColor, Segment


def _style_class(style: Style | str | None, default: str) -> str:
    if style is None:
        return default
    if isinstance(style, str):
        return style or default
    rendered = str(style)
    return default if rendered == "none" else rendered


def ansi_to_segments(text: str, default_style: str = ConsoleColor.SANDBOX) -> list[Segment]:
    """Split ANSI-colored text into styled segments.

    Unstyled runs get ``default_style``. OSC 8 hyperlinks become ``href``.
    Escape sequences never appear in the returned text.

    Example:
        >>> [s.text for s in ansi_to_segments("\\x1b[32mok\\x1b[0m done")]
        ['ok', ' done']
    """
    parsed = Text.from_ansi(text, end="")
    plain = parsed.plain
    if not plain:
        return []

    # rich spans may overlap; split the text at every span boundary and take
    # the innermost (last applied) style for each piece.
    boundaries = {0, len(plain)}
    for span in parsed.spans:
        boundaries.add(span.start)
        boundaries.add(span.end)
    cuts = sorted(b for b in boundaries if 0 <= b <= len(plain))

    segments: list[Segment] = []
    for start, end in zip(cuts, cuts[1:]):
        if start == end:
            continue
        style: Style | str | None = None
        for span in parsed.spans:
            if span.start <= start and end <= span.end:
                style = span.style
        href = style.link if isinstance(style, Style) else None
        piece = Segment(
            text=plain[start:end],
            style=_style_class(style, default_style),
            href=href,
        )
        if segments and segments[-1].style == piece.style and segments[-1].href == piece.href:
            last = segments.pop()
            piece = Segment(text=last.text + piece.text, style=piece.style, href=piece.href)
        segments.append(piece)
    return segments
