from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Flag, auto
from typing import Any, Dict, List, Mapping

from .timecode import try_parse_time
from .types import ProbeError

# Chapter titles that carry no information: bare numbers, timestamps, "Chapter 3", ...
USELESS_CHAPTER_TITLE_RE = re.compile(
    r"^\s*(\d+|\d+:\d+:\d+\.\d+|chapter\.?\s*\d+|チャプター\s*\d+|Глава\s*\d+)\s*$",
    re.IGNORECASE,
)

IMAGE_VIDEO_CODECS = {"png", "mjpeg"}


class MovieInformationType(Flag):
    NONE = 0
    FORMAT = auto()
    STREAMS = auto()
    CHAPTERS = auto()
    ALL = FORMAT | STREAMS | CHAPTERS


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_rational(text: str) -> tuple[int, int]:
    numerator, sep, denominator = str(text).partition("/")
    try:
        num = int(numerator)
        den = int(denominator) if sep else 1
    except ValueError:
        raise ProbeError(f"Invalid time-base format: {text!r}") from None
    if den == 0:
        raise ProbeError(f"Invalid time-base format: {text!r}")
    return num, den


@dataclass(slots=True)
class StreamDisposition:
    default: bool = False
    dub: bool = False
    original: bool = False
    comment: bool = False
    lyrics: bool = False
    karaoke: bool = False
    forced: bool = False
    hearing_impaired: bool = False
    visual_impaired: bool = False
    clean_effects: bool = False
    attached_pic: bool = False
    timed_thumbnails: bool = False
    captions: bool = False
    descriptions: bool = False
    metadata: bool = False
    dependent: bool = False
    still_image: bool = False

    @classmethod
    def from_json(cls, data: Mapping[str, Any] | None) -> StreamDisposition:
        data = data or {}
        return cls(**{name: bool(_to_int(data.get(name)) or 0) for name in cls.__dataclass_fields__})


@dataclass(slots=True)
class StreamTags:
    title: str | None = None
    language: str | None = None
    encoder: str | None = None
    duration: float | None = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any] | None) -> StreamTags:
        # Matroska muxers write tag keys in upper case
        tags = {str(key).lower(): value for key, value in (data or {}).items()}
        duration = tags.get("duration")
        language = tags.get("language")
        return cls(
            title=tags.get("title"),
            language=None if language == "und" else language,
            encoder=tags.get("encoder"),
            duration=_parse_tag_duration(duration) if duration else None,
        )


def _parse_tag_duration(text: str) -> float | None:
    # Matroska writes "00:23:40.123000000"
    return try_parse_time(str(text))


@dataclass(slots=True)
class StreamInfo:
    index: int
    type_index: int
    codec_type: str
    codec_name: str | None
    codec_long_name: str | None
    disposition: StreamDisposition
    tags: StreamTags
    bits_per_raw_sample: int | None = None
    width: int | None = None
    height: int | None = None
    display_aspect_ratio: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    channel_layout: str | None = None

    @property
    def resolution(self) -> str | None:
        if self.width is None or self.height is None:
            return None
        return f"{self.width}x{self.height}"

    @property
    def is_image(self) -> bool:
        """True for cover-art style video streams."""
        return self.codec_type == "video" and (
            self.codec_name in IMAGE_VIDEO_CODECS or self.disposition.attached_pic
        )

    @classmethod
    def from_json(cls, data: Mapping[str, Any], type_index: int) -> StreamInfo:
        if "index" not in data:
            raise ProbeError('The "index" property of the stream information is undefined.')
        codec_type = str(data.get("codec_type") or "unknown")
        return cls(
            index=int(data["index"]),
            type_index=type_index,
            codec_type=codec_type,
            codec_name=data.get("codec_name"),
            codec_long_name=data.get("codec_long_name"),
            disposition=StreamDisposition.from_json(data.get("disposition")),
            tags=StreamTags.from_json(data.get("tags")),
            bits_per_raw_sample=_to_int(data.get("bits_per_raw_sample")),
            width=_to_int(data.get("width")),
            height=_to_int(data.get("height")),
            display_aspect_ratio=data.get("display_aspect_ratio"),
            sample_rate=_to_int(data.get("sample_rate")),
            channels=_to_int(data.get("channels")),
            channel_layout=data.get("channel_layout"),
        )


@dataclass(slots=True)
class ChapterInfo:
    id: int
    time_base: tuple[int, int]
    start: int
    end: int
    title: str

    @property
    def start_seconds(self) -> float:
        num, den = self.time_base
        return self.start * num / den

    @property
    def end_seconds(self) -> float:
        num, den = self.time_base
        return self.end * num / den

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds

    @property
    def has_unique_title(self) -> bool:
        return bool(self.title) and not USELESS_CHAPTER_TITLE_RE.match(self.title)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> ChapterInfo:
        tags = {str(key).lower(): value for key, value in (data.get("tags") or {}).items()}
        try:
            return cls(
                id=int(data.get("id", 0)),
                time_base=_parse_rational(data.get("time_base", "1/1000")),
                start=int(data["start"]),
                end=int(data["end"]),
                title=str(tags.get("title") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProbeError(f"Invalid chapter information: {dict(data)!r}") from exc


@dataclass(slots=True)
class MovieFormat:
    file_name: str | None
    format_name: str | None
    format_long_name: str | None
    streams_count: int | None
    start_time: float | None
    duration: float | None
    size: int | None
    bit_rate: int | None
    probe_score: int | None
    tags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> MovieFormat:
        return cls(
            file_name=data.get("filename"),
            format_name=data.get("format_name"),
            format_long_name=data.get("format_long_name"),
            streams_count=_to_int(data.get("nb_streams")),
            start_time=_to_float(data.get("start_time")),
            duration=_to_float(data.get("duration")),
            size=_to_int(data.get("size")),
            bit_rate=_to_int(data.get("bit_rate")),
            probe_score=_to_int(data.get("probe_score")),
            tags={str(key).lower(): str(value) for key, value in (data.get("tags") or {}).items()},
        )


class MovieInformation:
    """Decoded ffprobe output. Sections ffprobe was not asked for raise ``ProbeError``."""

    def __init__(self, data: Mapping[str, Any]) -> None:
        format_data = data.get("format")
        self._format = MovieFormat.from_json(format_data) if format_data is not None else None
        chapters = data.get("chapters")
        self._chapters = [ChapterInfo.from_json(item) for item in chapters] if chapters is not None else None
        streams = data.get("streams")
        self._streams = _split_streams(streams) if streams is not None else None

    @classmethod
    def from_json(cls, text: str) -> MovieInformation:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProbeError(f"The information returned by ffprobe is in an unknown format: {text!r}") from exc
        if not isinstance(data, dict):
            raise ProbeError("ffprobe returned no information.")
        return cls(data)

    @property
    def format(self) -> MovieFormat:
        if self._format is None:
            raise ProbeError("ffprobe returned no format information.")
        return self._format

    @property
    def chapters(self) -> List[ChapterInfo]:
        if self._chapters is None:
            raise ProbeError('"chapters" property does not exist.')
        return self._chapters

    @property
    def streams(self) -> List[StreamInfo]:
        if self._streams is None:
            raise ProbeError('"streams" property does not exist.')
        return self._streams

    def streams_of(self, codec_type: str) -> List[StreamInfo]:
        return [stream for stream in self.streams if stream.codec_type == codec_type]

    @property
    def video_streams(self) -> List[StreamInfo]:
        return self.streams_of("video")

    @property
    def audio_streams(self) -> List[StreamInfo]:
        return self.streams_of("audio")

    @property
    def subtitle_streams(self) -> List[StreamInfo]:
        return self.streams_of("subtitle")

    @property
    def data_streams(self) -> List[StreamInfo]:
        return self.streams_of("data")

    @property
    def attachment_streams(self) -> List[StreamInfo]:
        return self.streams_of("attachment")


def _split_streams(streams: List[Mapping[str, Any]]) -> List[StreamInfo]:
    counters: Dict[str, int] = {}
    result: List[StreamInfo] = []
    for item in streams:
        codec_type = str(item.get("codec_type") or "unknown")
        type_index = counters.get(codec_type, 0)
        counters[codec_type] = type_index + 1
        result.append(StreamInfo.from_json(item, type_index))
    return result
