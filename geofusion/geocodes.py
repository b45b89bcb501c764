"""
Municipality code normalization and code-keyed joins.

Publishers disagree on the INE code format: boundary files carry 6 characters
(check digit appended), vote files carry 10 (district suffix appended) and the
rest carry the bare 5-character code. Every join in the engine goes through
normalize() so that all mappings share one key space.

Usage:
    from geofusion.geocodes import normalize, index_by_code

    normalize("1700100000")          # "17001"
    votes = index_by_code(vote_records)
"""

from typing import Any, Dict, Iterable, Optional, TypeVar

from loguru import logger

from .errors import InvalidGeoCode

CODE_LENGTH = 5

R = TypeVar("R")


def normalize(raw: Any) -> str:
    """Truncate a raw municipality code to its canonical 5-character prefix.

    Codes are opaque strings: no character-set check, no integer parsing.

    Args:
        raw: Raw code as published (5, 6 or 10 characters)

    Returns:
        The first 5 characters of ``raw``

    Raises:
        InvalidGeoCode: If ``raw`` is not a string or is shorter than 5 characters
    """
    if not isinstance(raw, str):
        raise InvalidGeoCode(f"Municipality code must be a string, got {type(raw).__name__}")
    if len(raw) < CODE_LENGTH:
        raise InvalidGeoCode(f"Municipality code too short: {raw!r}")
    return raw[:CODE_LENGTH]


def _record_code(record: Any, code_attr: str) -> Any:
    if isinstance(record, dict):
        return record.get(code_attr)
    return getattr(record, code_attr, None)


def index_by_code(
    records: Optional[Iterable[R]], code_attr: str = "code", label: str = "records"
) -> Dict[str, R]:
    """Index records by normalized municipality code.

    When two records normalize to the same code the later one wins. There is no
    conflict detection. Records with an invalid code are skipped.

    Args:
        records: Records carrying a raw code (dataclasses or dicts), or None
        code_attr: Attribute or key holding the raw code
        label: Dataset name used in log messages

    Returns:
        Mapping of canonical code to record (empty for None or empty input)
    """
    indexed: Dict[str, R] = {}
    if not records:
        return indexed

    skipped = 0
    for record in records:
        try:
            code = normalize(_record_code(record, code_attr))
        except InvalidGeoCode as e:
            skipped += 1
            logger.debug(f"  Skipping {label} record: {e}")
            continue
        indexed[code] = record

    if skipped:
        logger.warning(f"  ⚠️ Skipped {skipped} {label} record(s) with invalid municipality codes")

    return indexed
