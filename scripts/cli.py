"""
CLI for skin analysis -> JSON.

    python scripts/cli.py score --questionnaire q.json [--metrics m.json]
    python scripts/cli.py capture [--questionnaire q.json] [--no-preview]

In the capture preview press 'c' to take a sample and 'q' to cancel.
"""
from __future__ import annotations
import argparse, asyncio, json, logging, os
from typing import Optional

import cv2

from skinrisk.camera import OpenCVVideoSource
from skinrisk.capture import CAPTURE_COUNT, CaptureOrchestrator
from skinrisk.config import Settings
from skinrisk.errors import SkinAnalysisError
from skinrisk.model_manager import ModelLifecycleManager
from skinrisk.pipeline import assess_questionnaire, run_capture_session
from skinrisk.visual import draw_capture_overlay

WINDOW = "skin analysis"


def _load_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(result, out_path: str) -> None:
    print(json.dumps(result, indent=2, ensure_ascii=False))
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2, ensure_ascii=False)
    print(f"Result written to {out_path}")


def make_preview_trigger(source: OpenCVVideoSource, orchestrator: CaptureOrchestrator):
    """Show the live preview until the user presses 'c' (capture) or 'q' (cancel)."""
    async def trigger(state) -> bool:
        while True:
            frame = await asyncio.to_thread(source.grab_frame)
            if frame is not None:
                samples = orchestrator.samples
                region = samples[-1].region if samples else None
                label = f"{len(samples)}/{CAPTURE_COUNT} captured - press c"
                shown = draw_capture_overlay(frame, region, label, getattr(state, "notice", None))
                cv2.imshow(WINDOW, shown)
            key = cv2.waitKey(1) & 0xFF
            if key == ord("c"):
                return True
            if key == ord("q"):
                return False
            await asyncio.sleep(0.03)
    return trigger


async def _capture(settings: Settings, camera_index: Optional[int], preview: bool):
    models = ModelLifecycleManager(settings)
    source = OpenCVVideoSource(settings, camera_index)
    orchestrator = CaptureOrchestrator(models, source, settings)
    trigger = make_preview_trigger(source, orchestrator) if preview else None
    try:
        return await run_capture_session(orchestrator, trigger)
    finally:
        orchestrator.close()
        models.dispose()
        if preview:
            cv2.destroyAllWindows()


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Skin feature analysis and beauty risk scoring")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("score", help="Score a questionnaire JSON")
    sp.add_argument("--questionnaire", required=True, help="Path to questionnaire JSON")
    sp.add_argument("--metrics", default=None, help="Optional path to aggregated metrics JSON")
    sp.add_argument("--out", default="output/assessment.json", help="Path to output JSON")

    cp = sub.add_parser("capture", help="Capture three samples from the camera")
    cp.add_argument("--camera", type=int, default=None, help="Camera index (default: CAMERA_INDEX)")
    cp.add_argument("--questionnaire", default=None, help="Also score this questionnaire with the metrics")
    cp.add_argument("--no-preview", action="store_true", help="Capture back to back without a window")
    cp.add_argument("--out", default="output/capture.json", help="Path to output JSON")

    args = p.parse_args(argv)

    settings = Settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    try:
        if args.command == "score":
            metrics = _load_json(args.metrics) if args.metrics else None
            result = assess_questionnaire(_load_json(args.questionnaire), metrics).model_dump()
        else:
            metrics = asyncio.run(_capture(settings, args.camera, preview=not args.no_preview))
            if args.questionnaire:
                result = assess_questionnaire(_load_json(args.questionnaire), metrics).model_dump()
            else:
                result = metrics.model_dump()
    except SkinAnalysisError as e:
        print(f"Error: {e}")
        return 1

    _write_json(result, args.out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
