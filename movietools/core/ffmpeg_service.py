from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Mapping, Sequence

from movietools.config import Config

from .cancellation import CancellationToken
from .chapters import (
    DEFAULT_MAXIMUM_DURATION,
    apply_chapter_edits,
    chapters_from_info,
    chapters_from_start_times,
    to_ffmetadata_lines,
)
from .ffmpeg_log import LineSink
from .ffmpeg_wrapper import FFmpegWrapper
from .metadata_editor import StreamKey, build_metadata_arguments
from .movie import MovieInformation, MovieInformationType
from .redirection import InputRedirection, text_input
from .types import Completed, FFmpegError, RunOutcome

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# A recording counts as complete when it is within this many seconds of the expected length.
DURATION_TOLERANCE_SECONDS = 1.0


class FFmpegService:
    """High-level façade that drives ffmpeg/ffprobe with optional progress reporting."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self.wrapper = FFmpegWrapper(self.config.ffmpeg_path, self.config.ffprobe_path)

    def convert(
        self,
        input_file: str | Path,
        output_file: str | Path,
        params: Mapping[str, object] | None = None,
        *,
        callback: ProgressCallback | None = None,
        log_line_sink: LineSink | None = None,
        token: CancellationToken | None = None,
    ) -> RunOutcome:
        """Convert one file; returns ``Cancelled()`` or a successful ``Completed``.

        Raises ``FFmpegError`` when ffmpeg reports a non-zero exit code.
        """
        arguments = self.wrapper.build_arguments(input_file, output_file, params)
        return self._run(arguments, log_line_sink=log_line_sink, progress_sink=callback, token=token)

    def edit_metadata(
        self,
        input_file: str | Path,
        output_file: str | Path,
        *,
        stream_tags: Mapping[StreamKey, Mapping[str, str]] | None = None,
        stream_dispositions: Mapping[StreamKey, Mapping[str, bool]] | None = None,
        clear_disposition: bool = False,
        clear_chapters: bool = False,
        overwrite: bool = False,
        log_line_sink: LineSink | None = None,
        token: CancellationToken | None = None,
    ) -> RunOutcome:
        """Copy every stream into ``output_file`` with rewritten tags and dispositions."""
        info = self.probe(input_file, MovieInformationType.STREAMS, token=token)
        arguments = ["-hide_banner", "-y" if overwrite else "-n", "-i", str(input_file), "-c", "copy", "-map", "0"]
        arguments += build_metadata_arguments(
            info, stream_tags, stream_dispositions, clear_disposition=clear_disposition
        )
        arguments += ["-map_chapters", "-1" if clear_chapters else "0", str(output_file)]
        return self._run(arguments, log_line_sink=log_line_sink, token=token)

    def edit_chapters(
        self,
        input_file: str | Path,
        output_file: str | Path,
        *,
        start_times: Sequence[float] | None = None,
        maximum_duration: float = DEFAULT_MAXIMUM_DURATION,
        titles: Mapping[int, str] | None = None,
        keep_empty: bool = False,
        overwrite: bool = False,
        log_line_sink: LineSink | None = None,
        token: CancellationToken | None = None,
    ) -> RunOutcome:
        """Copy ``input_file`` with a new chapter list.

        The chapters come from ``start_times`` when given, otherwise from the
        input itself. ffmpeg reads them as FFMETADATA from its stdin, so the
        quit key is unavailable and only the probe honours ``token``.
        """
        info = self.probe(input_file, MovieInformationType.STREAMS | MovieInformationType.CHAPTERS, token=token)
        if start_times is not None:
            chapters = chapters_from_start_times(start_times, maximum_duration)
        else:
            chapters = chapters_from_info(info.chapters)
        chapters = apply_chapter_edits(chapters, titles, keep_empty=keep_empty)

        arguments = ["-hide_banner", "-y" if overwrite else "-n", "-i", str(input_file)]
        arguments += ["-f", "ffmetadata", "-i", "-", "-c", "copy", "-map", "0"]
        for symbol, streams in (("v", info.video_streams), ("a", info.audio_streams), ("s", info.subtitle_streams)):
            for stream in streams:
                default = "+" if stream.disposition.default else "-"
                forced = "+" if stream.disposition.forced else "-"
                arguments += [f"-disposition:{symbol}:{stream.type_index}", f"{default}default{forced}forced"]
        arguments += ["-map_chapters", "1", str(output_file)]

        lines = to_ffmetadata_lines(chapters)
        logger.debug("Writing %d chapter(s) to %s", len(chapters), output_file)
        return self._run(
            arguments,
            stdin=text_input(lambda: next(lines, None)),
            log_line_sink=log_line_sink,
            token=token,
        )

    def probe(
        self,
        media_path: str | Path,
        requested: MovieInformationType = MovieInformationType.ALL,
        *,
        token: CancellationToken | None = None,
    ) -> MovieInformation:
        return self.wrapper.probe(media_path, requested, token=token)

    def check_duration(
        self,
        media_path: str | Path,
        expected_seconds: float | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> bool | None:
        """Check whether a recording runs to its expected end.

        The expected length is ``expected_seconds`` when given, otherwise the
        end of the last chapter. Returns None when the container reports no
        duration, and True when there is nothing to compare against.
        """
        info = self.probe(media_path, token=token)
        if expected_seconds is None:
            chapters = info.chapters
            if not chapters:
                logger.debug("No chapters in %s; nothing to compare against", media_path)
                return True
            expected_seconds = chapters[-1].end_seconds
        return is_duration_complete(info, expected_seconds - 0.001)

    def _run(
        self,
        arguments: List[str],
        *,
        stdin: InputRedirection | None = None,
        log_line_sink: LineSink | None = None,
        progress_sink: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> RunOutcome:
        outcome = self.wrapper.run(
            arguments,
            stdin=stdin,
            log_line_sink=log_line_sink,
            progress_sink=progress_sink,
            token=token,
            cancel_retry_interval=self.config.cancel_retry_seconds,
            poll_interval=self.config.poll_seconds,
        )
        if isinstance(outcome, Completed) and not outcome.succeeded:
            raise FFmpegError(
                f"ffmpeg failed with exit code {outcome.exit_code}",
                [self.wrapper.ffmpeg_path, *arguments],
                outcome.exit_code,
            )
        return outcome


def is_duration_complete(info: MovieInformation, expected_seconds: float) -> bool | None:
    duration = info.format.duration
    if duration is None:
        return None
    return abs(duration - expected_seconds) <= DURATION_TOLERANCE_SECONDS
