#!/usr/bin/env python3
"""Live webcam practice demo driven by CaptureSession directly.

Usage:
    python examples/demo_webcam.py --sign open_palm [--camera 0] [--no-display]
"""

import argparse
import asyncio
import sys
from pathlib import Path

import cv2

from sign_practice import CaptureConstraints, CaptureSession, HandPoseEstimator, SignPracticeError
from sign_practice.drawing import draw_overlay
from sign_practice.keypoints import TemplateLibrary

LIBRARY = Path(__file__).parent / "signs.json"


async def practice(args):
    template = TemplateLibrary.from_file(LIBRARY)[args.sign]
    session = CaptureSession(
        HandPoseEstimator(),
        constraints=CaptureConstraints(device_index=args.camera),
    )
    quit_requested = asyncio.Event()

    @session.on_frame
    def render(result):
        if args.no_display or result.frame is None:
            return
        cv2.imshow("sign-practice", draw_overlay(result.frame.copy(), result, sign=template.name))
        if cv2.waitKey(1) & 0xFF == ord("q"):
            quit_requested.set()

    @session.on_mastery
    def mastered(event):
        print(f"  🎉 {event.template}: {event.to_progress()}")

    async with session:
        session.activate(template)
        await session.start()
        print("Press 'q' to quit\n")
        try:
            await quit_requested.wait()
        finally:
            await session.stop()
            cv2.destroyAllWindows()

    print(f"\nProcessed {session.frames_emitted} frames")


def main():
    parser = argparse.ArgumentParser(description="sign-practice webcam demo")
    parser.add_argument("--sign", default="open_palm", help="Template to practice")
    parser.add_argument("--camera", type=int, default=0, help="Camera index")
    parser.add_argument("--no-display", action="store_true", help="Run headless (Ctrl+C to quit)")
    args = parser.parse_args()

    try:
        asyncio.run(practice(args))
    except SignPracticeError as e:
        print(f"Error: {e.user_message} ({e})")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
