from __future__ import annotations

import dataclasses
import re
from typing import Dict, List, Mapping, Tuple

from .movie import MovieInformation, StreamDisposition, StreamInfo
from .types import MovieToolsError

# ffmpeg stream specifier letter for each codec type
STREAM_TYPE_SYMBOLS = {
    "video": "v",
    "audio": "a",
    "subtitle": "s",
    "data": "d",
    "attachment": "t",
}

# ffmpeg writes these itself, so they are never copied back
AUTOMATIC_TAGS = {"encoder", "duration"}

DISPOSITION_NAMES = tuple(field.name for field in dataclasses.fields(StreamDisposition))

StreamKey = Tuple[str, int]

_STREAM_KEY_RE = re.compile(r"^(?P<symbol>[vasdt]):(?P<index>\d+)$")
_TAG_ASSIGNMENT_RE = re.compile(r"^(?P<name>[^=\s]+)=(?P<value>.*)$", re.DOTALL)
_DISPOSITION_SPEC_RE = re.compile(r"([+-])([a-z_]+)")


def parse_stream_key(text: str) -> StreamKey:
    """``"a:1"`` -> ``("a", 1)``, the second audio stream."""
    match = _STREAM_KEY_RE.match(text.strip())
    if not match:
        raise ValueError(f"Stream must look like <v|a|s|d|t>:<index>: {text!r}")
    return match.group("symbol"), int(match.group("index"))


def parse_tag_assignment(text: str) -> Tuple[str, str]:
    match = _TAG_ASSIGNMENT_RE.match(text)
    if not match:
        raise ValueError(f"Metadata must look like <name>=<value>: {text!r}")
    return match.group("name").lower(), match.group("value")


def parse_disposition_spec(text: str) -> Dict[str, bool]:
    """``"+default-forced"`` -> ``{"default": True, "forced": False}``."""
    spec = text.strip()
    flags: Dict[str, bool] = {}
    position = 0
    for match in _DISPOSITION_SPEC_RE.finditer(spec):
        if match.start() != position:
            break
        sign, name = match.groups()
        if name not in DISPOSITION_NAMES:
            raise ValueError(f"Unknown disposition {name!r} in {text!r}")
        flags[name] = sign == "+"
        position = match.end()
    if not flags or position != len(spec):
        raise ValueError(f"Disposition must look like +name-name...: {text!r}")
    return flags


def _stream_key(stream: StreamInfo) -> StreamKey | None:
    symbol = STREAM_TYPE_SYMBOLS.get(stream.codec_type)
    return None if symbol is None else (symbol, stream.type_index)


def build_metadata_arguments(
    info: MovieInformation,
    stream_tags: Mapping[StreamKey, Mapping[str, str]] | None = None,
    stream_dispositions: Mapping[StreamKey, Mapping[str, bool]] | None = None,
    *,
    clear_disposition: bool = False,
) -> List[str]:
    """ffmpeg options that rewrite stream tags and dispositions.

    Tags are only emitted when they differ from what ffprobe reported.
    ``default`` is always emitted because ffmpeg turns it on unless told
    otherwise. ``clear_disposition`` switches ``default`` and ``forced`` off
    before the explicit changes are applied.
    """
    stream_tags = stream_tags or {}
    stream_dispositions = stream_dispositions or {}
    known = {key for stream in info.streams if (key := _stream_key(stream)) is not None}
    for key in (*stream_tags, *stream_dispositions):
        if key not in known:
            raise MovieToolsError(f"The movie has no stream {key[0]}:{key[1]}")

    arguments: List[str] = []
    for stream in info.streams:
        key = _stream_key(stream)
        if key is None:
            continue
        specifier = f"{key[0]}:{key[1]}"

        original_tags = {"title": stream.tags.title or "", "language": stream.tags.language or ""}
        for name, value in stream_tags.get(key, {}).items():
            if name in AUTOMATIC_TAGS:
                continue
            if name in original_tags and original_tags[name] == value:
                continue
            arguments.extend([f"-metadata:s:{specifier}", f"{name}={value}"])

        original = dataclasses.asdict(stream.disposition)
        wanted = dict(original)
        if clear_disposition:
            wanted["default"] = wanted["forced"] = False
        wanted.update(stream_dispositions.get(key, {}))
        flags = "".join(
            f"{'+' if wanted[name] else '-'}{name}"
            for name in DISPOSITION_NAMES
            if name == "default" or wanted[name] != original[name]
        )
        arguments.extend([f"-disposition:{specifier}", flags])
    return arguments


def split_stream_option(text: str) -> Tuple[StreamKey, str]:
    """``"a:1:title=Commentary"`` -> ``(("a", 1), "title=Commentary")``."""
    parts = text.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Expected <v|a|s|d|t>:<index>:<value>: {text!r}")
    return parse_stream_key(f"{parts[0]}:{parts[1]}"), parts[2]
