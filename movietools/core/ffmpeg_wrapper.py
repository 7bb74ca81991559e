from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Mapping, Sequence

from .cancellation import (
    DEFAULT_CANCEL_RETRY_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    CancellationToken,
    terminate,
    write_quit_key,
)
from .command import Arguments, execute_command, require_command
from .ffmpeg_log import FfmpegLogScanner, LineSink, ProgressSink
from .movie import MovieInformation, MovieInformationType
from .redirection import InputRedirection, OutputRedirection, text_output
from .types import Cancelled, OperationCancelledError, ProbeError, RunOutcome

logger = logging.getLogger(__name__)

PROBE_BASE_ARGUMENTS = [
    "-hide_banner",
    "-v",
    "error",
    "-analyzeduration",
    "100M",
    "-probesize",
    "100M",
    "-print_format",
    "json",
]


def execute_ffmpeg(
    arguments: Arguments,
    *,
    stdin: InputRedirection | None = None,
    stdout: OutputRedirection | None = None,
    log_line_sink: LineSink | None = None,
    progress_sink: ProgressSink | None = None,
    ffmpeg_path: str | Path = "ffmpeg",
    token: CancellationToken | None = None,
    log: logging.Logger | None = None,
    cancel_retry_interval: float = DEFAULT_CANCEL_RETRY_INTERVAL,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> RunOutcome:
    """Run ffmpeg, turning its stderr into log lines and progress fractions.

    Unless the caller feeds stdin itself, a cancellation request is answered
    by typing ``q`` into ffmpeg, which makes it finish the output file
    cleanly before exiting.
    """
    log = log or logger
    executable = require_command(ffmpeg_path)
    scanner = FfmpegLogScanner(
        log_line_sink or (lambda line: log.debug("ffmpeg: %s", line)),
        progress_sink or (lambda fraction: None),
    )
    outcome = execute_command(
        executable,
        arguments,
        stdin=stdin,
        stdout=stdout,
        stderr=text_output(scanner),
        cancel_action=write_quit_key if stdin is None else None,
        token=token,
        log=log,
        cancel_retry_interval=cancel_retry_interval,
        poll_interval=poll_interval,
    )
    if isinstance(outcome, Cancelled) and scanner.state.quit_acknowledged:
        log.info("ffmpeg acknowledged the quit request")
    return outcome


def get_movie_information(
    input_file: str | Path,
    requested: MovieInformationType = MovieInformationType.ALL,
    *,
    input_format: str | None = None,
    ffprobe_path: str | Path = "ffprobe",
    token: CancellationToken | None = None,
    log: logging.Logger | None = None,
) -> MovieInformation:
    """Probe ``input_file`` with ffprobe and decode the requested sections."""
    log = log or logger
    executable = require_command(ffprobe_path)

    arguments: List[str] = list(PROBE_BASE_ARGUMENTS)
    if MovieInformationType.FORMAT in requested:
        arguments.append("-show_format")
    if MovieInformationType.STREAMS in requested:
        arguments.append("-show_streams")
    if MovieInformationType.CHAPTERS in requested:
        arguments.append("-show_chapters")
    if input_format is not None:
        arguments.extend(["-f", input_format])
    arguments.extend(["-i", str(input_file)])

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    outcome = execute_command(
        executable,
        arguments,
        stdout=text_output(stdout_lines.append),
        stderr=text_output(stderr_lines.append),
        cancel_action=terminate,
        token=token,
        log=log,
    )
    if isinstance(outcome, Cancelled):
        raise OperationCancelledError(f"ffprobe was cancelled: {input_file}")
    log.info("ffprobe exited with exit code %d", outcome.exit_code)
    if outcome.exit_code != 0:
        detail = stderr_lines[-1] if stderr_lines else "no message"
        raise ProbeError(f"ffprobe failed. (exit code {outcome.exit_code}): {detail}")
    return MovieInformation.from_json("\n".join(stdout_lines))


class FFmpegWrapper:
    """Utility facade for building and executing basic FFmpeg commands."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe") -> None:
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def build_arguments(
        self,
        input_file: str | Path,
        output_file: str | Path,
        params: Mapping[str, object] | None = None,
    ) -> List[str]:
        params = dict(params or {})
        args: List[str] = ["-hide_banner"]
        overwrite = params.get("overwrite", True)
        args.append("-y" if overwrite else "-n")

        # Input timing controls
        if (start := params.get("start")) is not None:
            args.extend(["-ss", str(start)])

        args.extend(["-i", str(input_file)])

        if (end := params.get("end")) is not None:
            args.extend(["-to", str(end)])

        if params.get("map_all", True):
            args.extend(["-map", "0"])
        if params.get("copy_metadata", True):
            args.extend(["-map_metadata", "0", "-map_chapters", "0"])

        video_params = params.get("video") or {}
        audio_params = params.get("audio") or {}

        self._apply_video_params(args, video_params)
        self._apply_audio_params(args, audio_params)
        if (subtitle_codec := params.get("subtitle_codec")):
            args.extend(["-c:s", str(subtitle_codec)])

        extra = params.get("extra_args")
        if isinstance(extra, (list, tuple)):
            args.extend(str(arg) for arg in extra)

        args.append(str(output_file))
        return args

    def run(
        self,
        arguments: Sequence[str],
        *,
        stdin: InputRedirection | None = None,
        log_line_sink: LineSink | None = None,
        progress_sink: ProgressSink | None = None,
        token: CancellationToken | None = None,
        cancel_retry_interval: float = DEFAULT_CANCEL_RETRY_INTERVAL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> RunOutcome:
        return execute_ffmpeg(
            arguments,
            stdin=stdin,
            log_line_sink=log_line_sink,
            progress_sink=progress_sink,
            ffmpeg_path=self.ffmpeg_path,
            token=token,
            cancel_retry_interval=cancel_retry_interval,
            poll_interval=poll_interval,
        )

    def probe(
        self,
        media_path: str | Path,
        requested: MovieInformationType = MovieInformationType.ALL,
        *,
        token: CancellationToken | None = None,
    ) -> MovieInformation:
        """Return decoded ffprobe information for the provided media file."""
        return get_movie_information(media_path, requested, ffprobe_path=self.ffprobe_path, token=token)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _apply_video_params(self, args: List[str], video: Mapping[str, object]) -> None:
        codec = video.get("codec")
        if codec:
            args.extend(["-c:v", str(codec)])

        crf = video.get("crf")
        bitrate = video.get("bitrate")
        if crf is not None:
            args.extend(["-crf", str(crf)])
        elif bitrate:
            args.extend(["-b:v", str(bitrate)])

        if (fps := video.get("fps")) is not None:
            args.extend(["-r", str(fps)])
        if (resolution := video.get("resolution")):
            args.extend(["-s", str(resolution)])
        if (preset := video.get("preset")):
            args.extend(["-preset", str(preset)])
        if (tune := video.get("tune")):
            args.extend(["-tune", str(tune)])

    def _apply_audio_params(self, args: List[str], audio: Mapping[str, object]) -> None:
        codec = audio.get("codec")
        if codec:
            args.extend(["-c:a", str(codec)])
        if (bitrate := audio.get("bitrate")):
            args.extend(["-b:a", str(bitrate)])
        if (sample_rate := audio.get("sample_rate")):
            args.extend(["-ar", str(sample_rate)])
        if (channels := audio.get("channels")):
            args.extend(["-ac", str(channels)])
