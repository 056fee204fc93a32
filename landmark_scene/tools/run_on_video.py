from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import cv2

from landmark_scene.core.camera import PerspectiveCamera
from landmark_scene.core.config.settings import SceneParams, SceneSettings
from landmark_scene.core.detectors.mediapipe import build_detector
from landmark_scene.core.markers import MarkerBuffer
from landmark_scene.core.pipeline import LandmarkPipeline
from landmark_scene.core.projectors.base import build_projector
from landmark_scene.core.types import DetectionResult, to_jsonable


class _DummyDetector:
    def detect(self, frame, timestamp_ms):  # pragma: no cover - trivial
        return DetectionResult(timestamp_ms=timestamp_ms)

    def close(self):  # pragma: no cover - trivial
        return None


def _frame_timestamp_ms(cap: cv2.VideoCapture, index: int, fps: float, last_ts: int) -> int:
    pos = int(cap.get(cv2.CAP_PROP_POS_MSEC) or 0)
    if pos <= last_ts:
        pos = int(index * 1000.0 / fps) if fps > 0 else index
    return max(pos, last_ts + 1)


def run(args):
    cap = cv2.VideoCapture(args.input)
    if not cap.isOpened():
        raise SystemExit(f"Cannot open video {args.input}")
    settings = SceneSettings(
        tracking_mode=args.mode,
        fov=args.fov,
        depth_scalar=args.depth_scalar,
        solver_iterations=args.iterations,
    )
    if args.face_model:
        settings.face_model_path = args.face_model
    if args.pose_model:
        settings.pose_model_path = args.pose_model
    detector = _DummyDetector() if args.mock else build_detector(settings)
    pipeline = LandmarkPipeline(
        detector=detector,
        projector=build_projector(settings.tracking_mode, settings),
        camera=PerspectiveCamera(
            fov=settings.fov,
            near=settings.camera_near,
            far=settings.camera_far,
            position=settings.camera_position,
        ),
        params=SceneParams(fov=settings.fov, depth_scalar=settings.depth_scalar),
        markers=MarkerBuffer(settings.marker_capacity),
    )
    fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
    outputs = []
    last_ts = -1
    index = 0
    try:
        while True:
            ok, frame = cap.read()
            if not ok:
                break
            last_ts = _frame_timestamp_ms(cap, index, fps, last_ts)
            index += 1
            if args.profile:
                summary, _, _timings = pipeline.process_with_profile(frame, last_ts)
            else:
                summary, _ = pipeline.process(frame, last_ts)
            outputs.append(to_jsonable(summary))
            if args.max_frames and len(outputs) >= args.max_frames:
                break
    finally:
        cap.release()
        pipeline.close()
    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(outputs, f, indent=2)
    print(f"Wrote {len(outputs)} frame summaries to {out_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the landmark pipeline on a video")
    parser.add_argument("--input", required=True, help="Path to video file")
    parser.add_argument("--output", required=True, help="Where to save JSON output")
    parser.add_argument("--mode", choices=("face", "pose"), default="face")
    parser.add_argument("--fov", type=float, default=60.0)
    parser.add_argument("--depth-scalar", type=float, default=0.2)
    parser.add_argument("--iterations", type=int, default=1000, help="Pose solver iterations")
    parser.add_argument("--face-model", default=None, help="Face landmarker .task file")
    parser.add_argument("--pose-model", default=None, help="Pose landmarker .task file")
    parser.add_argument("--max-frames", type=int, default=0, help="Limit frames for quick tests")
    parser.add_argument("--profile", action="store_true", help="Record per-stage timings")
    parser.add_argument(
        "--mock", action="store_true", help="Use dummy detector (no model download)"
    )
    return parser


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run(build_parser().parse_args())
