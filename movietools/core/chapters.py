"""Chapter lists and their FFMETADATA rendering.

ffmpeg reads chapters from a second input in the ``ffmetadata`` format::

    ;FFMETADATA1
    [CHAPTER]
    TIMEBASE=1/1000000000
    START=0
    END=30000000000
    title=Opening
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, List, Mapping

from .movie import ChapterInfo
from .timecode import format_time, parse_time

logger = logging.getLogger(__name__)

FFMETADATA_HEADER = ";FFMETADATA1"
NANOSECONDS = 1_000_000_000
DEFAULT_MAXIMUM_DURATION = 168 * 3600.0

_FFMETADATA_SPECIAL_RE = re.compile(r"([=;#\\\n])")


@dataclass(frozen=True, slots=True)
class SimpleChapter:
    start_seconds: float
    end_seconds: float
    title: str = ""

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


def parse_chapter_start_times(text: str) -> List[float]:
    """Parse ``0,1:41.835,+1:49.309`` into ascending start times in seconds.

    A leading ``+`` makes an entry relative to the one before it.
    """
    times: List[float] = []
    for spec in text.split(","):
        spec = spec.strip()
        relative = spec.startswith("+")
        try:
            seconds = parse_time(spec[1:] if relative else spec)
        except ValueError:
            raise ValueError(f"The chapter start time is in an invalid format: {spec!r} in {text!r}") from None
        if relative:
            if not times:
                raise ValueError(
                    f"Do not prefix the start time of the first chapter with a plus sign (+): {spec!r} in {text!r}"
                )
            seconds += times[-1]
        elif times and seconds < times[-1]:
            raise ValueError(f"The list of start times is not in ascending order: {text!r}")
        times.append(seconds)
    return times


def chapters_from_start_times(
    start_times: Iterable[float],
    maximum_duration: float = DEFAULT_MAXIMUM_DURATION,
) -> List[SimpleChapter]:
    """Each chapter ends where the next begins; the last one ends at ``maximum_duration``."""
    starts = list(start_times)
    if starts and starts[0] != 0:
        logger.warning("The time of the first chapter is not zero: start-time=%s", format_time(starts[0], 6))
    chapters: List[SimpleChapter] = []
    for index, start in enumerate(starts):
        if start >= maximum_duration:
            raise ValueError(
                "The chapter start time is too large; raise the maximum chapter duration: "
                f"start-time={format_time(start, 6)} at #{index}"
            )
        end = starts[index + 1] if index + 1 < len(starts) else maximum_duration
        chapters.append(SimpleChapter(start, end))
    return chapters


def chapters_from_info(chapters: Iterable[ChapterInfo]) -> List[SimpleChapter]:
    return [SimpleChapter(chapter.start_seconds, chapter.end_seconds, chapter.title) for chapter in chapters]


def apply_chapter_edits(
    chapters: Iterable[SimpleChapter],
    titles: Mapping[int, str] | None = None,
    *,
    keep_empty: bool = False,
) -> List[SimpleChapter]:
    """Drop zero-length chapters unless ``keep_empty``, then retitle by position.

    An empty string in ``titles`` removes that chapter's title.
    """
    result = [chapter for chapter in chapters if keep_empty or chapter.start_seconds < chapter.end_seconds]
    for number, title in sorted((titles or {}).items()):
        if not 0 <= number < len(result):
            raise ValueError(f"A title was given for chapter #{number}, but there is no such chapter: {title!r}")
        result[number] = replace(result[number], title=title)
    return result


def escape_ffmetadata(value: str) -> str:
    return _FFMETADATA_SPECIAL_RE.sub(r"\\\1", value)


def to_ffmetadata_lines(chapters: Iterable[SimpleChapter]) -> Iterator[str]:
    yield FFMETADATA_HEADER
    for chapter in chapters:
        yield "[CHAPTER]"
        yield f"TIMEBASE=1/{NANOSECONDS}"
        yield f"START={round(chapter.start_seconds * NANOSECONDS)}"
        yield f"END={round(chapter.end_seconds * NANOSECONDS)}"
        if chapter.title:
            yield f"title={escape_ffmetadata(chapter.title)}"


def to_ffmetadata(chapters: Iterable[SimpleChapter]) -> str:
    return "".join(f"{line}\n" for line in to_ffmetadata_lines(chapters))
