import json
import os
import subprocess
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

from landmark_scene.tools import run_on_video


def _make_dummy_video(path: Path, frames: int = 5, size=(64, 64)):
    fourcc = cv2.VideoWriter_fourcc(*"MJPG")
    writer = cv2.VideoWriter(str(path), fourcc, 5.0, size)
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video on this platform")
    for i in range(frames):
        frame = np.zeros((size[1], size[0], 3), dtype=np.uint8)
        cv2.putText(frame, str(i), (5, 32), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)
        writer.write(frame)
    writer.release()

    cap = cv2.VideoCapture(str(path))
    ok, frame = cap.read()
    cap.release()
    if not ok or frame is None:
        pytest.skip("OpenCV backend cannot read generated video on this platform")


@pytest.mark.parametrize("mode", ["face", "pose"])
def test_run_on_video_cli(tmp_path: Path, mode: str):
    video_path = tmp_path / "dummy.avi"
    out_path = tmp_path / "out.json"
    _make_dummy_video(video_path)

    env = os.environ.copy()
    env["PYTHONPATH"] = env.get("PYTHONPATH", ".") + os.pathsep + str(Path(__file__).resolve().parents[1])

    cmd = [
        sys.executable,
        "-m",
        "landmark_scene.tools.run_on_video",
        "--input",
        str(video_path),
        "--output",
        str(out_path),
        "--mode",
        mode,
        "--max-frames",
        "2",
        "--mock",
    ]
    result = subprocess.run(cmd, env=env, capture_output=True, text=True)
    assert result.returncode == 0, result.stderr
    assert out_path.exists()

    data = json.loads(out_path.read_text())
    assert 1 <= len(data) <= 2
    assert data[0]["mode"] == mode
    assert data[0]["count"] == 0
    assert [d["frame_id"] for d in data] == list(range(1, len(data) + 1))


def test_parser_defaults():
    args = run_on_video.build_parser().parse_args(["--input", "a.mp4", "--output", "o.json"])
    assert args.mode == "face"
    assert args.fov == 60.0
    assert args.mock is False
