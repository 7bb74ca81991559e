"""
movietools command line

Sub-commands:
  probe           print what ffprobe knows about a movie file as JSON
  check-duration  detect recordings that stop before their expected end
  convert         convert one or more files with ffmpeg, reporting progress
  edit-metadata   rewrite stream tags and dispositions without re-encoding
  edit-chapters   replace or retitle chapters without re-encoding
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TaskProgressColumn, TextColumn, TimeElapsedColumn

from movietools.config import Config, load_config
from movietools.core.cancellation import abort_external_commands
from movietools.core.chapters import DEFAULT_MAXIMUM_DURATION, parse_chapter_start_times
from movietools.core.ffmpeg_service import FFmpegService
from movietools.core.metadata_editor import parse_disposition_spec, parse_tag_assignment, split_stream_option
from movietools.core.movie import MovieInformation, MovieInformationType
from movietools.core.task_manager import Task, TaskManager, TaskStatus
from movietools.core.timecode import format_time, try_parse_time
from movietools.core.types import MovieToolsError, OperationCancelledError
from movietools.logging_utils import setup_logging

logger = logging.getLogger(__name__)

console = Console(stderr=True)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INCOMPLETE = 2
EXIT_CANCELLED = 130


# ----------------------------------------------------------------------
# probe
# ----------------------------------------------------------------------
def _requested_sections(args: argparse.Namespace) -> MovieInformationType:
    requested = MovieInformationType.NONE
    if args.format:
        requested |= MovieInformationType.FORMAT
    if args.streams:
        requested |= MovieInformationType.STREAMS
    if args.chapters:
        requested |= MovieInformationType.CHAPTERS
    return requested or MovieInformationType.ALL


def summarize(info: MovieInformation, requested: MovieInformationType) -> dict:
    summary: dict = {}
    if MovieInformationType.FORMAT in requested:
        summary["format"] = dataclasses.asdict(info.format)
    if MovieInformationType.STREAMS in requested:
        summary["streams"] = [dataclasses.asdict(stream) for stream in info.streams]
    if MovieInformationType.CHAPTERS in requested:
        summary["chapters"] = [
            {
                "id": chapter.id,
                "start": format_time(chapter.start_seconds),
                "end": format_time(chapter.end_seconds),
                "title": chapter.title,
            }
            for chapter in info.chapters
        ]
    return summary


def cmd_probe(args: argparse.Namespace, service: FFmpegService) -> int:
    requested = _requested_sections(args)
    info = service.probe(args.file, requested)
    print(json.dumps(summarize(info, requested), ensure_ascii=False, indent=2))
    return EXIT_OK


# ----------------------------------------------------------------------
# check-duration
# ----------------------------------------------------------------------
def rename_incomplete(path: Path) -> Path:
    """Rename ``path`` to ``.incomplete.<stem>[.N]<suffix>`` beside it."""
    for count in range(1, sys.maxsize):
        suffix = "" if count == 1 else f".{count}"
        target = path.with_name(f".incomplete.{path.stem}{suffix}{path.suffix}")
        if not target.exists():
            path.rename(target)
            logger.warning("Renamed incomplete recording %s -> %s", path, target.name)
            return target
    raise MovieToolsError(f"Could not rename {path}")


def cmd_check_duration(args: argparse.Namespace, service: FFmpegService) -> int:
    path = Path(args.input)
    if not path.is_file():
        logger.error('The file specified in the "--input" option does not exist: %s', args.input)
        return EXIT_FAILURE

    expected = None
    if args.duration is not None:
        expected = try_parse_time(args.duration)
        if expected is None:
            logger.error('The time format specified in the "--duration" option is invalid: %s', args.duration)
            return EXIT_FAILURE

    if args.verbose:
        logger.info("Probe movie information: %s", path)
    complete = service.check_duration(path, expected)
    if complete is True:
        return EXIT_OK
    rename_incomplete(path)
    return EXIT_INCOMPLETE


# ----------------------------------------------------------------------
# convert
# ----------------------------------------------------------------------
def _conversion_params(args: argparse.Namespace) -> dict:
    return {
        "overwrite": args.overwrite,
        "video": {
            "codec": args.vcodec,
            "crf": args.crf,
            "preset": args.preset,
            "tune": args.tune,
            "fps": args.fps,
            "resolution": args.resolution,
        },
        "audio": {"codec": args.acodec, "bitrate": args.abitrate},
        "subtitle_codec": args.scodec,
    }


class _ProgressDisplay:
    """One progress bar per conversion, created when the task first reports."""

    def __init__(self, progress: Progress) -> None:
        self.progress = progress
        self._rows: dict[str, TaskID] = {}
        self._lock = threading.Lock()

    def _row(self, task: Task) -> TaskID:
        with self._lock:
            if task.task_id not in self._rows:
                self._rows[task.task_id] = self.progress.add_task(task.input_file.name, total=1.0)
            return self._rows[task.task_id]

    def on_progress(self, task: Task, fraction: float) -> None:
        self.progress.update(self._row(task), completed=fraction)

    def on_task_update(self, task: Task) -> None:
        logger.debug("%s: %s", task.input_file.name, task.status.name.lower())
        if task.status is TaskStatus.COMPLETED:
            self.progress.update(self._row(task), completed=1.0)
        elif task.status in (TaskStatus.FAILED, TaskStatus.CANCELLED):
            self.progress.update(
                self._row(task),
                description=f"[red]{task.input_file.name} ({task.status.name.lower()})[/]",
            )


def cmd_convert(args: argparse.Namespace, service: FFmpegService) -> int:
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    extension = args.extension if args.extension.startswith(".") else f".{args.extension}"
    jobs = args.jobs or service.config.jobs

    console.print(f"[bold blue]Converting {len(args.inputs)} file(s)[/] with {jobs} worker(s)")
    previous_handler = signal.signal(signal.SIGINT, _abort_on_signal)
    try:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            display = _ProgressDisplay(progress)
            manager = TaskManager(
                service,
                max_workers=jobs,
                on_progress=display.on_progress,
                on_task_update=display.on_task_update,
            )
            try:
                for source in args.inputs:
                    source_path = Path(source)
                    manager.submit_conversion(
                        source_path,
                        output_dir / f"{source_path.stem}{extension}",
                        _conversion_params(args),
                    )
                tasks = manager.wait_all()
            finally:
                manager.shutdown()
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    for task in tasks:
        if task.status is TaskStatus.COMPLETED:
            console.print(f"[green]✓[/] {task.input_file.name} → {task.output.name}")
        elif task.status is TaskStatus.FAILED:
            console.print(f"[red]✗[/] {task.input_file.name}: {task.error}")

    if any(task.status is TaskStatus.CANCELLED for task in tasks):
        console.print("[yellow]Conversion cancelled[/]")
        return EXIT_CANCELLED
    if any(task.status is TaskStatus.FAILED for task in tasks):
        return EXIT_FAILURE
    return EXIT_OK


def _abort_on_signal(signum, frame) -> None:
    logger.warning("Interrupt received; asking running ffmpeg processes to stop")
    abort_external_commands()


# ----------------------------------------------------------------------
# edit-metadata / edit-chapters
# ----------------------------------------------------------------------
def _check_paths(args: argparse.Namespace) -> bool:
    if not Path(args.input).is_file():
        logger.error('The file specified in the "--input" option does not exist: %s', args.input)
        return False
    output = Path(args.output)
    if not output.absolute().parent.is_dir():
        logger.error('The directory of the "--output" file does not exist: %s', args.output)
        return False
    if output.exists() and not args.force:
        logger.error('The file specified in the "--output" option already exists: %s', args.output)
        return False
    return True


def _stream_edits(args: argparse.Namespace) -> tuple[dict, dict]:
    tags: dict = {}
    for option in args.stream_metadata:
        key, assignment = split_stream_option(option)
        name, value = parse_tag_assignment(assignment)
        tags.setdefault(key, {})[name] = value
    dispositions: dict = {}
    for option in args.stream_disposition:
        key, spec = split_stream_option(option)
        dispositions.setdefault(key, {}).update(parse_disposition_spec(spec))
    return tags, dispositions


def cmd_edit_metadata(args: argparse.Namespace, service: FFmpegService) -> int:
    try:
        tags, dispositions = _stream_edits(args)
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    if not _check_paths(args):
        return EXIT_FAILURE

    service.edit_metadata(
        args.input,
        args.output,
        stream_tags=tags,
        stream_dispositions=dispositions,
        clear_disposition=args.clear_disposition,
        clear_chapters=args.clear_chapters,
        overwrite=args.force,
    )
    return EXIT_OK


def _chapter_edits(args: argparse.Namespace) -> tuple[list | None, float, dict]:
    start_times = None
    if args.chapter_times is not None:
        start_times = parse_chapter_start_times(args.chapter_times)
    maximum = DEFAULT_MAXIMUM_DURATION
    if args.maximum_duration is not None:
        maximum = try_parse_time(args.maximum_duration)
        if maximum is None:
            raise ValueError(
                f'The time format specified in the "--maximum-duration" option is invalid: {args.maximum_duration}'
            )
    titles: dict = {}
    for number, title in args.title:
        if not number.isdigit():
            raise ValueError(f"Chapter numbers start at 0: {number!r}")
        titles[int(number)] = title
    return start_times, maximum, titles


def cmd_edit_chapters(args: argparse.Namespace, service: FFmpegService) -> int:
    try:
        start_times, maximum, titles = _chapter_edits(args)
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    if not _check_paths(args):
        return EXIT_FAILURE

    try:
        service.edit_chapters(
            args.input,
            args.output,
            start_times=start_times,
            maximum_duration=maximum,
            titles=titles,
            keep_empty=args.keep_empty_chapter,
            overwrite=args.force,
        )
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    return EXIT_OK


# ----------------------------------------------------------------------
# entry point
# ----------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="movietools",
        description="Probe, convert and edit movie files with ffprobe/ffmpeg",
    )
    parser.add_argument("--log-level", help="Log level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--log-file", help="Also write the log to this file")
    parser.add_argument("--ffmpeg", help="ffmpeg executable (default: MOVIETOOLS_FFMPEG or ffmpeg)")
    parser.add_argument("--ffprobe", help="ffprobe executable (default: MOVIETOOLS_FFPROBE or ffprobe)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    probe = subparsers.add_parser("probe", help="Print movie information as JSON")
    probe.add_argument("file")
    probe.add_argument("--format", action="store_true", help="Include container format")
    probe.add_argument("--streams", action="store_true", help="Include streams")
    probe.add_argument("--chapters", action="store_true", help="Include chapters")
    probe.set_defaults(handler=cmd_probe)

    check = subparsers.add_parser(
        "check-duration",
        help="Rename recordings that end before their expected duration",
        description=(
            "Checks whether a movie file has been recorded to the end. By default the "
            "expected length is the end of the last chapter. Incomplete files are renamed "
            'with the prefix ".incomplete.".'
        ),
    )
    check.add_argument("-i", "--input", required=True, help="Input movie file")
    check.add_argument("-t", "--duration", help="Expected duration ([[h:]m:]s)")
    check.add_argument("-v", "--verbose", action="store_true", help="Output additional messages")
    check.set_defaults(handler=cmd_check_duration)

    convert = subparsers.add_parser("convert", help="Convert movie files with ffmpeg")
    convert.add_argument("inputs", nargs="+", help="Input movie files")
    convert.add_argument("-o", "--output-dir", required=True, help="Directory for converted files")
    convert.add_argument("--extension", default=".mkv", help="Output file extension (default: .mkv)")
    convert.add_argument("--vcodec", default="copy", help="Video codec (default: copy)")
    convert.add_argument("--crf", type=int, help="Constant rate factor for the video encoder")
    convert.add_argument("--preset", help="Encoder preset")
    convert.add_argument("--tune", help="Encoder tuning, e.g. film")
    convert.add_argument("--fps", help="Output frame rate")
    convert.add_argument("--resolution", help="Output frame size, e.g. 1280x720")
    convert.add_argument("--acodec", default="copy", help="Audio codec (default: copy)")
    convert.add_argument("--abitrate", help="Audio bit rate, e.g. 192k")
    convert.add_argument("--scodec", default="copy", help="Subtitle codec (default: copy)")
    convert.add_argument("-j", "--jobs", type=int, help="Parallel conversions (default: MOVIETOOLS_JOBS or 1)")
    convert.add_argument(
        "--no-overwrite",
        dest="overwrite",
        action="store_false",
        help="Fail instead of overwriting existing output files",
    )
    convert.set_defaults(handler=cmd_convert)

    edit_metadata = subparsers.add_parser(
        "edit-metadata",
        help="Rewrite stream tags and dispositions without re-encoding",
        description=(
            "Copies every stream of the input movie and changes stream metadata and "
            "dispositions. A stream is written as <type>:<index>, where <type> is one of "
            "v (video), a (audio), s (subtitle), d (data) or t (attachment)."
        ),
    )
    _add_edit_paths(edit_metadata)
    edit_metadata.add_argument(
        "-s",
        "--stream-metadata",
        action="append",
        default=[],
        metavar="STREAM:NAME=VALUE",
        help="Set a stream tag, e.g. a:1:title=Commentary (an empty value deletes it)",
    )
    edit_metadata.add_argument(
        "-d",
        "--stream-disposition",
        action="append",
        default=[],
        metavar="STREAM:FLAGS",
        help="Change stream dispositions, e.g. s:0:+default-forced",
    )
    edit_metadata.add_argument(
        "--clear-disposition", action="store_true", help="Turn the default and forced dispositions off first"
    )
    edit_metadata.add_argument("--clear-chapters", action="store_true", help="Drop every chapter")
    edit_metadata.set_defaults(handler=cmd_edit_metadata)

    edit_chapters = subparsers.add_parser(
        "edit-chapters",
        help="Replace or retitle the chapters of a movie without re-encoding",
        description=(
            "Copies every stream of the input movie with a new chapter list. Without "
            '"--chapter-times" the chapters of the input are kept.'
        ),
    )
    _add_edit_paths(edit_chapters)
    edit_chapters.add_argument(
        "--chapter-times",
        metavar="LIST",
        help=(
            "Comma separated chapter start times; a leading + is relative to the "
            "previous one, e.g. 0,1:41.835,+1:49.309"
        ),
    )
    edit_chapters.add_argument(
        "--title",
        nargs=2,
        action="append",
        default=[],
        metavar=("N", "TITLE"),
        help="Set the title of chapter N, counting from 0 (an empty title deletes it)",
    )
    edit_chapters.add_argument(
        "--maximum-duration",
        metavar="TIME",
        help="End time of the last chapter when using --chapter-times (default: 168:00:00)",
    )
    edit_chapters.add_argument("--keep-empty-chapter", action="store_true", help="Keep chapters of zero length")
    edit_chapters.set_defaults(handler=cmd_edit_chapters)
    return parser


def _add_edit_paths(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-i", "--input", required=True, help="Input movie file")
    parser.add_argument("-o", "--output", required=True, help="Output movie file")
    parser.add_argument("-f", "--force", action="store_true", help="Overwrite the output file if it exists")


def _apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    if args.ffmpeg:
        config.ffmpeg_path = args.ffmpeg
    if args.ffprobe:
        config.ffprobe_path = args.ffprobe
    if args.log_level:
        config.log_level = args.log_level.upper()
    if args.log_file:
        config.log_file = args.log_file
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _apply_overrides(load_config(), args)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    setup_logging(config.log_level, config.log_file, console)
    service = FFmpegService(config)

    try:
        return args.handler(args, service)
    except OperationCancelledError as exc:
        logger.warning("%s", exc)
        return EXIT_CANCELLED
    except (MovieToolsError, OSError) as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
