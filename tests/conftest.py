import sys
import textwrap

import pytest


@pytest.fixture
def fake_tool(tmp_path):
    """Write an executable Python script standing in for ffmpeg/ffprobe."""
    if sys.platform == "win32":
        pytest.skip("fake tools rely on shebang scripts")

    def make(name, body):
        path = tmp_path / name
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
        path.chmod(0o755)
        return path

    return make


@pytest.fixture
def probe_document():
    """ffprobe -show_format -show_streams -show_chapters output for a small recording."""
    return {
        "streams": [
            {
                "index": 0,
                "codec_name": "h264",
                "codec_long_name": "H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10",
                "codec_type": "video",
                "width": 1920,
                "height": 1080,
                "display_aspect_ratio": "16:9",
                "bits_per_raw_sample": "8",
                "disposition": {"default": 1, "forced": 0, "attached_pic": 0},
                "tags": {"language": "und", "DURATION": "00:01:40.000000000"},
            },
            {
                "index": 1,
                "codec_name": "aac",
                "codec_type": "audio",
                "sample_rate": "48000",
                "channels": 2,
                "channel_layout": "stereo",
                "disposition": {"default": 1},
                "tags": {"language": "jpn", "title": "Main"},
            },
            {
                "index": 2,
                "codec_name": "aac",
                "codec_type": "audio",
                "sample_rate": "48000",
                "channels": 6,
                "channel_layout": "5.1",
                "disposition": {"default": 0, "comment": 1},
                "tags": {"language": "eng"},
            },
            {
                "index": 3,
                "codec_name": "ass",
                "codec_type": "subtitle",
                "disposition": {"forced": 1},
                "tags": {"LANGUAGE": "jpn"},
            },
            {
                "index": 4,
                "codec_name": "mjpeg",
                "codec_type": "video",
                "width": 600,
                "height": 600,
                "disposition": {"attached_pic": 1},
            },
        ],
        "chapters": [
            {
                "id": 0,
                "time_base": "1/1000000000",
                "start": 0,
                "end": 30000000000,
                "tags": {"title": "Opening"},
            },
            {
                "id": 1,
                "time_base": "1/1000000000",
                "start": 30000000000,
                "end": 100000000000,
                "tags": {"title": "Chapter 2"},
            },
        ],
        "format": {
            "filename": "movie.mkv",
            "nb_streams": 5,
            "format_name": "matroska,webm",
            "format_long_name": "Matroska / WebM",
            "start_time": "0.000000",
            "duration": "100.000000",
            "size": "12345678",
            "bit_rate": "987654",
            "probe_score": 100,
            "tags": {"ENCODER": "Lavf60.3.100"},
        },
    }
