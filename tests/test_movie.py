import json

import pytest

from movietools.core.movie import ChapterInfo, MovieInformation, MovieInformationType, StreamInfo
from movietools.core.types import ProbeError


def test_streams_are_decoded_with_per_type_indexes(probe_document):
    info = MovieInformation(probe_document)

    assert [stream.index for stream in info.streams] == [0, 1, 2, 3, 4]
    assert [(s.codec_type, s.type_index) for s in info.streams] == [
        ("video", 0),
        ("audio", 0),
        ("audio", 1),
        ("subtitle", 0),
        ("video", 1),
    ]
    assert [s.index for s in info.audio_streams] == [1, 2]
    assert [s.index for s in info.subtitle_streams] == [3]
    assert info.data_streams == []
    assert info.attachment_streams == []


def test_video_stream_details(probe_document):
    video, cover = MovieInformation(probe_document).video_streams

    assert video.resolution == "1920x1080"
    assert video.bits_per_raw_sample == 8
    assert video.tags.language is None
    assert video.tags.duration == 100.0
    assert video.disposition.default
    assert not video.disposition.forced
    assert not video.is_image
    assert cover.is_image


def test_audio_and_subtitle_details(probe_document):
    info = MovieInformation(probe_document)
    main, commentary = info.audio_streams

    assert (main.sample_rate, main.channels, main.channel_layout) == (48000, 2, "stereo")
    assert main.tags.title == "Main"
    assert main.tags.language == "jpn"
    assert commentary.disposition.comment
    assert not commentary.disposition.default
    assert info.subtitle_streams[0].tags.language == "jpn"
    assert info.subtitle_streams[0].disposition.forced
    assert main.resolution is None


def test_chapters_are_converted_to_seconds(probe_document):
    opening, second = MovieInformation(probe_document).chapters

    assert (opening.start_seconds, opening.end_seconds) == (0.0, 30.0)
    assert second.duration_seconds == 70.0
    assert opening.has_unique_title
    assert not second.has_unique_title


def test_format_section(probe_document):
    movie_format = MovieInformation(probe_document).format

    assert movie_format.file_name == "movie.mkv"
    assert movie_format.streams_count == 5
    assert movie_format.duration == 100.0
    assert movie_format.size == 12345678
    assert movie_format.tags == {"encoder": "Lavf60.3.100"}


def test_sections_not_requested_raise(probe_document):
    info = MovieInformation({"format": probe_document["format"]})

    assert info.format.duration == 100.0
    with pytest.raises(ProbeError):
        info.streams
    with pytest.raises(ProbeError):
        info.chapters
    with pytest.raises(ProbeError):
        MovieInformation({}).format


def test_from_json_rejects_garbage():
    with pytest.raises(ProbeError):
        MovieInformation.from_json("not json")
    with pytest.raises(ProbeError):
        MovieInformation.from_json("[]")


def test_from_json_round_trips_ffprobe_text(probe_document):
    info = MovieInformation.from_json(json.dumps(probe_document))
    assert len(info.streams) == 5


def test_stream_without_index_is_rejected():
    with pytest.raises(ProbeError):
        StreamInfo.from_json({"codec_type": "video"}, 0)


@pytest.mark.parametrize("time_base", ["1/0", "abc"])
def test_chapter_with_invalid_time_base_is_rejected(time_base):
    with pytest.raises(ProbeError):
        ChapterInfo.from_json({"id": 0, "time_base": time_base, "start": 0, "end": 1})


@pytest.mark.parametrize("title", ["", "3", "Chapter 12", "chapter.4", "00:01:02.000"])
def test_placeholder_chapter_titles_are_not_unique(title):
    chapter = ChapterInfo(id=0, time_base=(1, 1000), start=0, end=1000, title=title)
    assert not chapter.has_unique_title


def test_all_sections_flag():
    for section in (MovieInformationType.FORMAT, MovieInformationType.STREAMS, MovieInformationType.CHAPTERS):
        assert section in MovieInformationType.ALL
    assert MovieInformationType.CHAPTERS not in MovieInformationType.FORMAT | MovieInformationType.STREAMS
