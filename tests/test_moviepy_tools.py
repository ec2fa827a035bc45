"""Tests for the MoviePy progress logger and concat list helpers."""

from story_studio.tools.moviepy_tools import FractionLogger, read_concat_list, write_concat_list


def test_fraction_logger_reports_index_over_total():
    seen = []
    logger = FractionLogger(seen.append)

    logger(frame_index__index=3)
    logger(frame_index__total=4)
    logger(frame_index__index=1)
    logger(frame_index__index=4)
    logger(frame_index__index=9)

    assert seen == [0.25, 1.0, 1.0]


def test_fraction_logger_ignores_other_attributes():
    seen = []
    logger = FractionLogger(seen.append)

    logger(chunk__total=10)
    logger(chunk__message="writing audio")

    assert seen == []


def test_concat_list_resolves_entries_next_to_the_list(tmp_path):
    clips = [str(tmp_path / f"merged{i}.mp4") for i in range(3)]
    list_path = str(tmp_path / "filelist.txt")

    write_concat_list(clips, list_path)

    assert (tmp_path / "filelist.txt").read_text().splitlines() == [
        "file 'merged0.mp4'",
        "file 'merged1.mp4'",
        "file 'merged2.mp4'",
    ]
    assert read_concat_list(list_path) == clips


def test_read_concat_list_skips_unrelated_lines(tmp_path):
    list_path = tmp_path / "filelist.txt"
    list_path.write_text("# generated\nffconcat version 1.0\nfile 'a.mp4'\n\n", encoding="utf-8")

    assert read_concat_list(str(list_path)) == [str(tmp_path / "a.mp4")]
