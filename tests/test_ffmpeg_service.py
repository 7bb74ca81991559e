import json

import pytest

from movietools.config import Config
from movietools.core.cancellation import CancellationToken
from movietools.core.ffmpeg_service import FFmpegService
from movietools.core.movie import MovieInformation
from movietools.core.types import Completed, FFmpegError


@pytest.fixture
def service_with_info(probe_document):
    def make(duration=None, chapters=True):
        document = dict(probe_document)
        document["format"] = dict(probe_document["format"])
        if duration is None:
            document["format"].pop("duration")
        else:
            document["format"]["duration"] = str(duration)
        if not chapters:
            document["chapters"] = []
        service = FFmpegService(Config())
        service.probe = lambda path, requested=None, token=None: MovieInformation(document)
        return service

    return make


def test_convert_reports_progress(fake_tool, tmp_path):
    ffmpeg = fake_tool(
        "ffmpeg",
        r"""
        import sys
        open(sys.argv[-1], "w").close()
        sys.stderr.write("  Duration: 00:00:20.00, start: 0.000000\n")
        sys.stderr.write("frame=  250 fps=25 q=28.0 size= 1kB time=00:00:10.00 bitrate= 1kbits/s speed=1x\r")
        sys.stderr.write("frame=  500 fps=25 q=28.0 size= 2kB time=00:00:20.00 bitrate= 1kbits/s speed=1x\n")
        """,
    )
    service = FFmpegService(Config(ffmpeg_path=str(ffmpeg)))
    fractions = []

    outcome = service.convert(
        "in.mkv", tmp_path / "out.mkv", callback=fractions.append, token=CancellationToken()
    )

    assert outcome == Completed(0)
    assert fractions == [0.5, 1.0]
    assert (tmp_path / "out.mkv").exists()


def test_convert_failure_raises_with_the_command(fake_tool, tmp_path):
    ffmpeg = fake_tool("ffmpeg", "import sys; sys.exit(1)\n")
    service = FFmpegService(Config(ffmpeg_path=str(ffmpeg)))

    with pytest.raises(FFmpegError) as excinfo:
        service.convert("in.mkv", tmp_path / "out.mkv", token=CancellationToken())

    assert excinfo.value.exit_code == 1
    assert excinfo.value.command[0] == str(ffmpeg)
    assert excinfo.value.command[-1] == str(tmp_path / "out.mkv")


def test_recording_that_reaches_the_last_chapter_is_complete(service_with_info):
    assert service_with_info(duration=99.5).check_duration("rec.ts") is True


def test_recording_that_stops_early_is_incomplete(service_with_info):
    assert service_with_info(duration=90).check_duration("rec.ts") is False


def test_expected_duration_overrides_chapters(service_with_info):
    service = service_with_info(duration=60.2)
    assert service.check_duration("rec.ts", 60.0) is True
    assert service.check_duration("rec.ts", 100.0) is False


def test_without_chapters_there_is_nothing_to_compare(service_with_info):
    assert service_with_info(duration=5, chapters=False).check_duration("rec.ts") is True


def test_unknown_duration_is_undecided(service_with_info):
    assert service_with_info(duration=None).check_duration("rec.ts") is None


RECORDING_FFMPEG = r"""
import json, sys
record = {"argv": sys.argv[1:], "stdin": sys.stdin.read() if "-" in sys.argv else None}
with open(sys.argv[-1] + ".json", "w", encoding="utf-8") as handle:
    json.dump(record, handle)
"""


@pytest.fixture
def editing_service(fake_tool, probe_document):
    ffmpeg = fake_tool("ffmpeg", RECORDING_FFMPEG)
    service = FFmpegService(Config(ffmpeg_path=str(ffmpeg)))
    service.probe = lambda path, requested=None, token=None: MovieInformation(probe_document)
    return service


def recorded(output):
    return json.loads(output.with_name(output.name + ".json").read_text(encoding="utf-8"))


def test_edit_chapters_feeds_ffmetadata_on_stdin(editing_service, tmp_path):
    output = tmp_path / "out.mkv"

    outcome = editing_service.edit_chapters(
        "in.mkv", output, start_times=[0, 90.5], maximum_duration=120, titles={1: "Ending"}
    )

    assert outcome == Completed(0)
    record = recorded(output)
    assert record["argv"] == [
        "-hide_banner", "-n", "-i", "in.mkv",
        "-f", "ffmetadata", "-i", "-",
        "-c", "copy", "-map", "0",
        "-disposition:v:0", "+default-forced",
        "-disposition:v:1", "-default-forced",
        "-disposition:a:0", "+default-forced",
        "-disposition:a:1", "-default-forced",
        "-disposition:s:0", "-default+forced",
        "-map_chapters", "1",
        str(output),
    ]
    assert record["stdin"] == (
        ";FFMETADATA1\n"
        "[CHAPTER]\nTIMEBASE=1/1000000000\nSTART=0\nEND=90500000000\n"
        "[CHAPTER]\nTIMEBASE=1/1000000000\nSTART=90500000000\nEND=120000000000\ntitle=Ending\n"
    )


def test_edit_chapters_keeps_the_input_chapters_by_default(editing_service, tmp_path):
    output = tmp_path / "out.mkv"

    editing_service.edit_chapters("in.mkv", output, titles={0: ""}, overwrite=True)

    record = recorded(output)
    assert record["argv"][1] == "-y"
    assert "title=Opening" not in record["stdin"]
    assert record["stdin"].endswith("START=30000000000\nEND=100000000000\ntitle=Chapter 2\n")


def test_edit_metadata_copies_streams_with_new_tags(editing_service, tmp_path):
    output = tmp_path / "out.mkv"

    editing_service.edit_metadata(
        "in.mkv",
        output,
        stream_tags={("a", 1): {"title": "Commentary"}},
        clear_chapters=True,
    )

    argv = recorded(output)["argv"]
    assert argv[:8] == ["-hide_banner", "-n", "-i", "in.mkv", "-c", "copy", "-map", "0"]
    assert argv[argv.index("-metadata:s:a:1") + 1] == "title=Commentary"
    assert argv[-3:] == ["-map_chapters", "-1", str(output)]


def test_failed_edit_raises_ffmpeg_error(fake_tool, probe_document, tmp_path):
    ffmpeg = fake_tool("ffmpeg", "import sys; sys.stdin.read(); sys.exit(1)\n")
    service = FFmpegService(Config(ffmpeg_path=str(ffmpeg)))
    service.probe = lambda path, requested=None, token=None: MovieInformation(probe_document)

    with pytest.raises(FFmpegError) as excinfo:
        service.edit_chapters("in.mkv", tmp_path / "out.mkv")

    assert excinfo.value.exit_code == 1
