"""End-to-end tests for the batch pipeline (dry-run backend, no network)."""

import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from cinema_studio import config as config_lib
from cinema_studio import pipeline
from cinema_studio.jobs import FailureReason, OutcomeStatus
from cinema_studio.media import MediaError

from conftest import ScriptedBackend

REPO_DEFAULT = Path(__file__).resolve().parent.parent / "config" / "default.yaml"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config_lib, "DEFAULT_CONFIG_PATH", REPO_DEFAULT)
    monkeypatch.setattr(config_lib, "LOCAL_CONFIG_PATH", tmp_path / "local.yaml")


@pytest.fixture
def script_path(tmp_path):
    path = tmp_path / "scripts.json"
    path.write_text(
        json.dumps(
            {
                "global_settings": {"model": "veo-2.0-generate-001"},
                "segments": [
                    {"prompt": "Lighthouse at dawn"},
                    {"prompt": "Waves crash on the rocks"},
                    {"prompt": "The lens turns"},
                ],
            }
        )
    )
    return path


@pytest.fixture
def cli_args(tmp_path, script_path):
    return {
        "script": str(script_path),
        "output": str(tmp_path / "out"),
        "poll_interval": 0.01,
        "no_progress": True,
    }


class TestRunBatch:
    def test_dryrun_batch(self, tmp_path, cli_args):
        result = pipeline.run_batch(cli_args)

        out = tmp_path / "out"
        assert result.ok
        assert result.counts()["succeeded"] == 3
        for i in (1, 2, 3):
            assert (out / f"segment_{i:02d}.mp4").read_bytes().startswith(b"DRYRUN ")

        meta = json.loads((out / "batch_meta.json").read_text())
        assert meta["counts"]["succeeded"] == 3
        assert meta["config"]["generation"]["poll_interval_s"] == 0.01
        assert [o["status"] for o in meta["outcomes"]] == ["succeeded"] * 3

    def test_rerun_skips_everything(self, cli_args):
        pipeline.run_batch(cli_args)
        backend = ScriptedBackend()
        result = pipeline.run_batch(cli_args, backend=backend)

        assert backend.submits == []
        assert result.counts()["skipped"] == 3

    def test_stitch_after_success(self, tmp_path, cli_args):
        with patch("cinema_studio.pipeline.stitch_videos") as mock_stitch:
            pipeline.run_batch({**cli_args, "stitch": True})

        clips, final = mock_stitch.call_args[0]
        out = tmp_path / "out"
        assert clips == [str(out / f"segment_{i:02d}.mp4") for i in (1, 2, 3)]
        assert final == out / "final_movie.mp4"

    def test_stitch_skipped_on_failure(self, cli_args, capsys):
        backend = ScriptedBackend({2: ["hard"]})
        with patch("cinema_studio.pipeline.stitch_videos") as mock_stitch:
            result = pipeline.run_batch({**cli_args, "stitch": True}, backend=backend)

        assert not result.ok
        mock_stitch.assert_not_called()
        assert "Skipping stitch" in capsys.readouterr().out

    def test_pre_cancelled_batch(self, cli_args, capsys):
        cancel = threading.Event()
        cancel.set()
        backend = ScriptedBackend()

        result = pipeline.run_batch(cli_args, cancel_event=cancel, backend=backend)

        assert result.cancelled
        assert backend.submits == []
        assert "CANCELLED" in capsys.readouterr().out


class TestRunChained:
    def test_each_segment_starts_from_previous_frame(self, tmp_path, cli_args):
        backend = ScriptedBackend()

        def fake_extract(video_path, runner=None):
            return Path(video_path).with_name(f"{Path(video_path).stem}_last.jpg")

        with patch("cinema_studio.pipeline.extract_last_frame", side_effect=fake_extract):
            result = pipeline.run_batch({**cli_args, "chain": True}, backend=backend)

        assert result.ok
        out = tmp_path / "out"
        frames = [s.start_frame for s in backend.submitted]
        assert frames == [
            None,
            str(out / "segment_01_last.jpg"),
            str(out / "segment_02_last.jpg"),
        ]

    def test_chain_stops_at_failure(self, cli_args):
        backend = ScriptedBackend({2: ["hard"]})

        with patch(
            "cinema_studio.pipeline.extract_last_frame", return_value=Path("frame.jpg")
        ):
            result = pipeline.run_batch({**cli_args, "chain": True}, backend=backend)

        assert backend.submits == [1, 2]
        statuses = [o.status for o in result.outcomes]
        assert statuses == [OutcomeStatus.SUCCEEDED, OutcomeStatus.FAILED, OutcomeStatus.FAILED]
        assert result.outcomes[2].failure == FailureReason.UPSTREAM

    def test_frame_extraction_failure_continues(self, cli_args, capsys):
        backend = ScriptedBackend()

        with patch(
            "cinema_studio.pipeline.extract_last_frame", side_effect=MediaError("bad clip")
        ):
            result = pipeline.run_batch({**cli_args, "chain": True}, backend=backend)

        assert result.ok
        assert all(s.start_frame is None for s in backend.submitted)
        assert "Could not extract last frame" in capsys.readouterr().out


class TestStitchOutputDir:
    def test_no_clips(self, tmp_path):
        with pytest.raises(MediaError):
            pipeline.stitch_output_dir(tmp_path)

    def test_sorted_clips_ignore_temp_files(self, tmp_path):
        for name in ("segment_02.mp4", "segment_01.mp4", ".segment_03.mp4.abc.part"):
            (tmp_path / name).write_bytes(b"x")

        with patch("cinema_studio.pipeline.stitch_videos") as mock_stitch:
            pipeline.stitch_output_dir(tmp_path)

        clips, final = mock_stitch.call_args[0]
        assert [p.name for p in clips] == ["segment_01.mp4", "segment_02.mp4"]
        assert final == tmp_path / "final_movie.mp4"

    def test_clips_ordered_by_index_past_99(self, tmp_path):
        """segment_100 comes after segment_99, not after segment_10."""
        for i in range(1, 102):
            (tmp_path / f"segment_{i:02d}.mp4").write_bytes(b"x")

        with patch("cinema_studio.pipeline.stitch_videos") as mock_stitch:
            pipeline.stitch_output_dir(tmp_path)

        clips = mock_stitch.call_args[0][0]
        assert len(clips) == 101
        assert clips[10].name == "segment_11.mp4"
        assert [p.name for p in clips[-3:]] == [
            "segment_99.mp4",
            "segment_100.mp4",
            "segment_101.mp4",
        ]

    def test_custom_filename_template(self, tmp_path):
        for i in (3, 1, 2):
            (tmp_path / f"clip_{i:03d}.mp4").write_bytes(b"x")
        (tmp_path / "segment_01.mp4").write_bytes(b"x")
        (tmp_path / "final_movie.mp4").write_bytes(b"x")

        with patch("cinema_studio.pipeline.stitch_videos") as mock_stitch:
            pipeline.stitch_output_dir(tmp_path, filename_template="clip_{index:03d}.mp4")

        clips = mock_stitch.call_args[0][0]
        assert [p.name for p in clips] == ["clip_001.mp4", "clip_002.mp4", "clip_003.mp4"]

    def test_template_without_index(self, tmp_path):
        with pytest.raises(ValueError):
            pipeline.stitch_output_dir(tmp_path, filename_template="movie.mp4")


class TestFilenamePattern:
    def test_matches_only_template_names(self):
        pattern = pipeline.filename_pattern("segment_{index:02d}.mp4")
        assert pattern.fullmatch("segment_07.mp4").group("index") == "07"
        assert pattern.fullmatch("segment_123.mp4").group("index") == "123"
        assert pattern.fullmatch(".segment_07.mp4.ab12cd34.part") is None
        assert pattern.fullmatch("segment_07_last.jpg") is None

    def test_literal_dots_escaped(self):
        pattern = pipeline.filename_pattern("take.{index}.mp4")
        assert pattern.fullmatch("take.5.mp4")
        assert pattern.fullmatch("takeX5Xmp4") is None

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            pipeline.filename_pattern("{name}_{index}.mp4")
