"""
Chunk processing for programme normalization.

process_chunk runs inside worker processes, so it must stay a module-level
function with no shared state.
"""
from collections.abc import Iterable, Sequence

from epg_now.services.fetch_types import ProgramPayload, RawProgramme, TextField
from epg_now.utils.timezone import parse_timestamp

DEFAULT_TITLE = "No Title"


def first_present(candidates: Iterable[str | None], default: str = "") -> str:
    """Return the first candidate that is a string with non-whitespace content, unchanged."""
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return default


def _field_candidates(field: TextField | None) -> list[str | None]:
    # Upstream feeds put the value in element text, a `text` attribute,
    # or only in nested markup.
    if field is None:
        return []
    return [field.text, field.attributes.get("text"), field.content]


def process_programme(record: RawProgramme) -> ProgramPayload | None:
    """Normalize one record; None when either timestamp is unparsable."""
    start = parse_timestamp(record.start)
    stop = parse_timestamp(record.stop)
    if start is None or stop is None:
        return None

    return ProgramPayload(
        channel_id=record.channel or "",
        title=first_present(_field_candidates(record.title), DEFAULT_TITLE),
        description=first_present(_field_candidates(record.description)),
        category=first_present(_field_candidates(record.category)),
        start_time=start,
        stop_time=stop,
    )


def process_chunk(records: Sequence[RawProgramme]) -> list[ProgramPayload]:
    """Normalize a slice of raw programmes, preserving order and dropping bad entries."""
    result = []
    for record in records:
        program = process_programme(record)
        if program is not None:
            result.append(program)
    return result
