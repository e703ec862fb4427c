"""Provenance colors used in saved documents"""


class ProvenanceColors:
    """
    Span colors marking who wrote a piece of transcript text.
    Saved documents rely on these values, so they must not change.
    """

    # Recognizer output
    MACHINE = "#000000"
    MACHINE_RGB = "rgb(0, 0, 0)"

    # User edits
    USER = "#22c55e"
    USER_RGB = "rgb(34, 197, 94)"

    # Document chrome
    HEADING = "#333"
    BORDER = "#eee"
    METADATA = "#666"

    @classmethod
    def user_markers(cls) -> frozenset:
        """Accepted spellings of the user color, normalized"""
        return frozenset(normalize_color(c) for c in (cls.USER, cls.USER_RGB))


def normalize_color(value: str) -> str:
    """Lowercase and strip whitespace so equivalent spellings compare equal"""
    return "".join((value or "").split()).lower()
