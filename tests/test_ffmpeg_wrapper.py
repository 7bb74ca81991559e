import json
import logging
import threading

import pytest

from movietools.core.cancellation import CancellationToken
from movietools.core.ffmpeg_wrapper import FFmpegWrapper, execute_ffmpeg, get_movie_information
from movietools.core.movie import MovieInformationType
from movietools.core.redirection import null_input
from movietools.core.types import Cancelled, CommandNotFoundError, Completed, OperationCancelledError, ProbeError

FAKE_CONVERSION = r"""
import sys
sys.stderr.write("Input #0, matroska,webm, from 'in.mkv':\n")
sys.stderr.write("  Duration: 00:01:40.00, start: 0.000000, bitrate: 1234 kb/s\n")
for second in range(10, 101, 10):
    sys.stderr.write(
        f"frame={second * 25:5d} fps= 25 q=28.0 size=     256kB "
        f"time=00:{second // 60:02d}:{second % 60:02d}.00 bitrate= 209.7kbits/s speed=1x    \r"
    )
    sys.stderr.flush()
sys.stderr.write("\n")
"""

FAKE_INTERACTIVE = r"""
import sys, time
sys.stderr.write("  Duration: 00:10:00.00, start: 0.000000\n")
sys.stderr.flush()
if sys.stdin.read(1) == "q":
    sys.stderr.write("[q] command received. Exiting.\n")
    sys.stderr.flush()
    time.sleep(0.3)
    sys.exit(0)
sys.exit(1)
"""


def test_progress_and_log_lines_from_a_conversion(fake_tool):
    ffmpeg = fake_tool("ffmpeg", FAKE_CONVERSION)
    lines, fractions = [], []

    outcome = execute_ffmpeg(
        ["-i", "in.mkv", "out.mkv"],
        log_line_sink=lines.append,
        progress_sink=fractions.append,
        ffmpeg_path=ffmpeg,
        token=CancellationToken(),
    )

    assert outcome == Completed(0)
    assert fractions == pytest.approx([i / 10 for i in range(1, 11)])
    assert lines == [
        "Input #0, matroska,webm, from 'in.mkv':",
        "  Duration: 00:01:40.00, start: 0.000000, bitrate: 1234 kb/s",
    ]


def test_cancel_asks_ffmpeg_to_quit(fake_tool, caplog):
    caplog.set_level(logging.INFO, logger="movietools.core.ffmpeg_wrapper")
    ffmpeg = fake_tool("ffmpeg", FAKE_INTERACTIVE)
    token = CancellationToken()
    lines = []
    timer = threading.Timer(0.3, token.cancel)
    timer.start()
    try:
        outcome = execute_ffmpeg(
            ["-i", "in.mkv", "out.mkv"],
            log_line_sink=lines.append,
            ffmpeg_path=ffmpeg,
            token=token,
            poll_interval=0.05,
        )
    finally:
        timer.cancel()

    assert outcome == Cancelled()
    assert lines == ["  Duration: 00:10:00.00, start: 0.000000"]
    assert "acknowledged the quit request" in caplog.text


def test_caller_fed_stdin_disables_the_quit_key(fake_tool):
    ffmpeg = fake_tool("ffmpeg", "import sys; sys.stdin.read()\n")
    token = CancellationToken()
    token.cancel()

    outcome = execute_ffmpeg(["-i", "-", "out.mkv"], stdin=null_input(), ffmpeg_path=ffmpeg, token=token)

    assert outcome == Completed(0)


def test_missing_ffmpeg(tmp_path):
    with pytest.raises(CommandNotFoundError, match="command is not installed"):
        execute_ffmpeg(["-version"], ffmpeg_path=tmp_path / "ffmpeg")


def fake_ffprobe(fake_tool, tmp_path, document):
    args_file = tmp_path / "args.json"
    doc_file = tmp_path / "probe.json"
    doc_file.write_text(json.dumps(document, indent=2), encoding="utf-8")
    body = (
        "import json, sys\n"
        f"with open({str(args_file)!r}, 'w') as fh:\n"
        "    json.dump(sys.argv[1:], fh)\n"
        f"with open({str(doc_file)!r}) as fh:\n"
        "    sys.stdout.write(fh.read())\n"
    )
    return fake_tool("ffprobe", body), args_file


def test_get_movie_information(fake_tool, tmp_path, probe_document):
    ffprobe, args_file = fake_ffprobe(fake_tool, tmp_path, probe_document)

    info = get_movie_information("in put.mkv", ffprobe_path=ffprobe, token=CancellationToken())

    assert info.format.duration == 100.0
    assert len(info.streams) == 5
    args = json.loads(args_file.read_text())
    assert args[-2:] == ["-i", "in put.mkv"]
    assert {"-show_format", "-show_streams", "-show_chapters"} <= set(args)
    assert args[args.index("-print_format") + 1] == "json"


def test_get_movie_information_requests_only_some_sections(fake_tool, tmp_path, probe_document):
    ffprobe, args_file = fake_ffprobe(fake_tool, tmp_path, {"chapters": probe_document["chapters"]})

    info = get_movie_information(
        "in.ts",
        MovieInformationType.CHAPTERS,
        input_format="mpegts",
        ffprobe_path=ffprobe,
        token=CancellationToken(),
    )

    args = json.loads(args_file.read_text())
    assert "-show_chapters" in args
    assert "-show_format" not in args
    assert args[-4:] == ["-f", "mpegts", "-i", "in.ts"]
    assert len(info.chapters) == 2


def test_ffprobe_failure_reports_its_last_message(fake_tool):
    ffprobe = fake_tool(
        "ffprobe",
        r"""
        import sys
        sys.stderr.write("missing.mkv: No such file or directory\n")
        sys.exit(1)
        """,
    )
    with pytest.raises(ProbeError, match="No such file or directory"):
        get_movie_information("missing.mkv", ffprobe_path=ffprobe, token=CancellationToken())


def test_cancelled_probe_raises(fake_tool):
    ffprobe = fake_tool("ffprobe", "import time; time.sleep(30)\n")
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelledError):
        get_movie_information("in.mkv", ffprobe_path=ffprobe, token=token)


def test_build_arguments_defaults():
    args = FFmpegWrapper().build_arguments("in.ts", "out.mkv")
    assert args == [
        "-hide_banner",
        "-y",
        "-i",
        "in.ts",
        "-map",
        "0",
        "-map_metadata",
        "0",
        "-map_chapters",
        "0",
        "out.mkv",
    ]


def test_build_arguments_with_codecs_and_trimming():
    args = FFmpegWrapper().build_arguments(
        "in.ts",
        "out.mp4",
        {
            "overwrite": False,
            "start": "0:10",
            "end": "1:00",
            "map_all": False,
            "copy_metadata": False,
            "video": {"codec": "libx264", "crf": 20, "bitrate": "4M", "preset": "slow"},
            "audio": {"codec": "aac", "bitrate": "192k", "channels": 2},
            "subtitle_codec": "mov_text",
            "extra_args": ["-movflags", "+faststart"],
        },
    )
    assert args == [
        "-hide_banner",
        "-n",
        "-ss",
        "0:10",
        "-i",
        "in.ts",
        "-to",
        "1:00",
        "-c:v",
        "libx264",
        "-crf",
        "20",
        "-preset",
        "slow",
        "-c:a",
        "aac",
        "-b:a",
        "192k",
        "-ac",
        "2",
        "-c:s",
        "mov_text",
        "-movflags",
        "+faststart",
        "out.mp4",
    ]
