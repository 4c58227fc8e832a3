"""Tests for the sign-practice command line."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from sign_practice.cli import app
from sign_practice.keypoints import TemplateLibrary

LIBRARY = str(Path(__file__).parent.parent / "examples" / "signs.json")

runner = CliRunner()


@pytest.fixture
def recording(tmp_path):
    palm = TemplateLibrary.from_file(LIBRARY)["open_palm"].keypoints.tolist()
    frames = [{"timestamp": i / 30, "keypoints": palm if i % 4 else None} for i in range(12)]
    path = tmp_path / "session.json"
    path.write_text(json.dumps({"version": 1, "frames": frames}))
    return str(path)


class TestTemplatesCommand:
    def test_lists_signs(self):
        result = runner.invoke(app, ["templates", LIBRARY])
        assert result.exit_code == 0
        assert "open_palm" in result.output
        assert "fist" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["templates", str(tmp_path / "none.json")])
        assert result.exit_code == 1


class TestScoreCommand:
    def test_same_sign(self):
        result = runner.invoke(app, ["score", "open_palm", "open_palm", "--templates", LIBRARY])
        assert result.exit_code == 0
        assert "Confidence: 100%" in result.output

    def test_different_signs(self):
        result = runner.invoke(app, ["score", "fist", "open_palm", "--templates", LIBRARY])
        assert result.exit_code == 0
        assert "Confidence: 100%" not in result.output

    def test_keypoint_files(self, tmp_path):
        a = tmp_path / "a.json"
        b = tmp_path / "b.json"
        a.write_text(json.dumps([[0, 0], [10, 0], [10, 10]]))
        b.write_text(json.dumps({"keypoints": [[100, 100], [120, 100], [120, 120]]}))
        result = runner.invoke(app, ["score", str(a), str(b)])
        assert result.exit_code == 0
        assert "Confidence: 100%" in result.output

    def test_mismatched_lengths(self, tmp_path):
        a = tmp_path / "a.json"
        b = tmp_path / "b.json"
        a.write_text(json.dumps([[0, 0], [1, 1]]))
        b.write_text(json.dumps([[0, 0], [1, 1], [2, 2]]))
        result = runner.invoke(app, ["score", str(a), str(b)])
        assert result.exit_code == 1

    def test_unknown_name(self):
        result = runner.invoke(app, ["score", "nope", "open_palm", "--templates", LIBRARY])
        assert result.exit_code == 1


class TestReplayCommand:
    def test_replay_masters(self, recording):
        result = runner.invoke(
            app, ["replay", recording, LIBRARY, "--sign", "open_palm", "--fps", "200"]
        )
        assert result.exit_code == 0, result.output
        assert "Mastered: yes" in result.output
        assert "Best: 100%" in result.output

    def test_replay_other_sign(self, recording):
        result = runner.invoke(app, ["replay", recording, LIBRARY, "--sign", "fist", "--fps", "200"])
        assert result.exit_code == 0, result.output
        assert "Replay complete" in result.output

    def test_unknown_sign(self, recording):
        result = runner.invoke(app, ["replay", recording, LIBRARY, "--sign", "wave"])
        assert result.exit_code == 1

    def test_missing_recording(self, tmp_path):
        result = runner.invoke(
            app, ["replay", str(tmp_path / "none.json"), LIBRARY, "--sign", "fist"]
        )
        assert result.exit_code == 1
