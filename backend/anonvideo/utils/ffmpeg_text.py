"""
Escaping helpers for text embedded in ffmpeg filter graphs.

A value inside ``-filter_complex`` is unescaped twice: first by the
filtergraph parser (delimiters ``[],;``), then by the filter's option
parser (delimiters ``=:``). Both levels treat a backslash as "take the
next character literally" outside quotes, while inside single quotes a
backslash is literal and an apostrophe cannot appear at all. So values
are escaped with backslashes at both levels and never quoted.
"""

# Specials for the filter option parser (key=value:key=value)
_OPTION_SPECIALS = "\\':="
# Specials for the filtergraph parser (filter=args,filter;[label])
_GRAPH_SPECIALS = "\\'[],;"


def _backslash_escape(text: str, specials: str) -> str:
    return "".join("\\" + ch if ch in specials else ch for ch in text)


def escape_filter_value(value: str) -> str:
    """Escape a literal option value for use inside a filter graph."""
    return _backslash_escape(_backslash_escape(value, _OPTION_SPECIALS), _GRAPH_SPECIALS)


def escape_ffmpeg_text(text: str) -> str:
    """Escape caption text for a drawtext ``text=`` value.

    Line breaks become spaces and surrounding whitespace is dropped,
    since the option parser trims unescaped trailing whitespace anyway.
    The filter must be built with ``expansion=none`` so ``%`` is not
    treated as a drawtext expansion sequence.
    """
    flat = " ".join(text.replace("\r", " ").replace("\n", " ").split())
    return escape_filter_value(flat)
