"""
Extractor table primitives shared by every miner.

Each element kind declares an ordered list of Extractor(name, pattern,
handler). run_extractors() walks that list with the same per-pattern
iteration cap, so no single pathological regex can stall a scan.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional

MAX_REGEX_ITERATIONS = 10000


@dataclass(frozen=True)
class Extractor:
    name: str
    pattern: "re.Pattern[str]"
    # handler(match, source_path, accumulator)
    handler: Callable[["re.Match[str]", str, Any], None]


def bounded_finditer(pattern: "re.Pattern[str]", text: str, limit: int = MAX_REGEX_ITERATIONS) -> Iterator["re.Match[str]"]:
    """finditer that stops silently after `limit` matches."""
    for count, match in enumerate(pattern.finditer(text), start=1):
        if count > limit:
            return
        yield match


def run_extractors(extractors: List[Extractor], content: str, source: str, accumulator: Any) -> None:
    for extractor in extractors:
        for match in bounded_finditer(extractor.pattern, content):
            extractor.handler(match, source, accumulator)


def first_group(match: "re.Match[str]") -> Optional[str]:
    """First non-empty capture group, for patterns with alternative groups."""
    for value in match.groups():
        if value:
            return value
    return None


def field_name_to_label(field_name: str) -> str:
    """firstName / first_name / FIRST_NAME -> 'First Name'"""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", field_name)
    spaced = re.sub(r"[_-]", " ", spaced).strip()
    return " ".join(word[:1].upper() + word[1:].lower() for word in spaced.split(" ") if word)

