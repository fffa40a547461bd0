"""Channel identifier normalization shared by the write and read paths."""
import re

_NON_ID_CHARS = re.compile(r"[^\w.]", re.ASCII)


def normalize_channel_id(raw: str | None) -> str:
    """
    Canonical channel key: lower-cased, only [A-Za-z0-9_.] kept, trimmed.

    normalize_channel_id("RAI 1!") == "rai1"
    """
    if not raw:
        return ""
    return _NON_ID_CHARS.sub("", str(raw).lower()).strip()
