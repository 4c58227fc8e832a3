#!/usr/bin/env python3
"""sign-practice benchmark: normalize/score latency and feedback throughput.

Uses synthetic keypoints around the templates in examples/signs.json.
No camera or model required.

Usage:
    python examples/benchmark.py
    python examples/benchmark.py --iterations 5000 --jitter 15
"""

from __future__ import annotations

import argparse
import gc
import os
import sys
import time
from pathlib import Path

import numpy as np

from sign_practice.feedback import FeedbackStateMachine
from sign_practice.keypoints import TemplateLibrary
from sign_practice.scoring import normalize_keypoints, score_confidence

LIBRARY = Path(__file__).parent / "signs.json"


def generate_live_keypoints(template: np.ndarray, n: int, jitter: float) -> list[np.ndarray]:
    """Template copies moved, scaled and perturbed like a real hand would be."""
    rng = np.random.default_rng(0)
    frames = []
    for _ in range(n):
        scale = rng.uniform(0.5, 2.0)
        offset = rng.uniform(-200, 200, size=2)
        noise = rng.normal(0, jitter, size=template.shape)
        frames.append(template * scale + offset + noise)
    return frames


def timed(fn, items) -> dict:
    for item in items[:10]:
        fn(item)

    gc.collect()
    times = []
    for item in items:
        t0 = time.perf_counter()
        fn(item)
        times.append(time.perf_counter() - t0)

    times_ms = np.array(times) * 1000
    return {
        "mean_ms": float(np.mean(times_ms)),
        "median_ms": float(np.median(times_ms)),
        "p95_ms": float(np.percentile(times_ms, 95)),
        "p99_ms": float(np.percentile(times_ms, 99)),
        "throughput_fps": 1000.0 / float(np.mean(times_ms)),
    }


def print_table(title: str, rows: list[tuple[str, str]]):
    max_key = max(len(r[0]) for r in rows)
    max_val = max(len(r[1]) for r in rows)
    width = max_key + max_val + 7

    print()
    print(f"  ╭{'─' * width}╮")
    print(f"  │ {title:<{width-2}} │")
    print(f"  ├{'─' * width}┤")
    for key, val in rows:
        print(f"  │ {key:<{max_key}}   {val:>{max_val}} │")
    print(f"  ╰{'─' * width}╯")


def main():
    parser = argparse.ArgumentParser(description="sign-practice benchmark")
    parser.add_argument("-n", "--iterations", type=int, default=2000, help="Number of frames")
    parser.add_argument("--jitter", type=float, default=8.0, help="Per-keypoint noise in pixels")
    parser.add_argument("--sign", default="open_palm", help="Template to score against")
    args = parser.parse_args()

    library = TemplateLibrary.from_file(LIBRARY)
    template = library[args.sign].keypoints
    target = normalize_keypoints(template)

    print(f"\n  Generating {args.iterations} synthetic frames around '{args.sign}'...")
    frames = generate_live_keypoints(template, args.iterations, args.jitter)

    normalize = timed(normalize_keypoints, frames)
    scores = []
    score = timed(lambda kp: scores.append(score_confidence(normalize_keypoints(kp), target)), frames)

    fsm = FeedbackStateMachine()
    fsm.reset(args.sign)
    feedback = timed(fsm.observe, scores[: args.iterations])

    print_table("Normalize", [
        ("Mean latency", f"{normalize['mean_ms']:.4f} ms"),
        ("P95 latency", f"{normalize['p95_ms']:.4f} ms"),
        ("Throughput", f"{normalize['throughput_fps']:.0f} frames/sec"),
    ])
    print_table("Normalize + score", [
        ("Mean latency", f"{score['mean_ms']:.4f} ms"),
        ("Median latency", f"{score['median_ms']:.4f} ms"),
        ("P99 latency", f"{score['p99_ms']:.4f} ms"),
        ("Throughput", f"{score['throughput_fps']:.0f} frames/sec"),
    ])
    print_table("Feedback state machine", [
        ("Mean latency", f"{feedback['mean_ms']:.5f} ms"),
        ("Throughput", f"{feedback['throughput_fps']:.0f} updates/sec"),
    ])
    print_table("Scores", [
        ("Mean confidence", f"{np.mean(scores):.1f}%"),
        ("Frames >= mastery", f"{sum(s >= fsm.mastery_threshold for s in scores):,}"),
        ("Platform", f"{sys.platform} / {os.uname().machine}"),
        ("NumPy", f"{np.__version__}"),
    ])

    budget_ms = 1000.0 / 30
    print()
    print(f"  ⚡ Scoring uses {score['mean_ms'] / budget_ms:.2%} of a 30 FPS frame budget")
    print()


if __name__ == "__main__":
    main()
