"""sign-practice CLI.

Usage:
    sign-practice practice    - Practice a sign live from the camera
    sign-practice score       - Score two keypoint sets offline
    sign-practice templates   - List the signs in a template library
    sign-practice replay      - Replay a recorded session against a sign
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer

from sign_practice.config import EngineConfig, load_config
from sign_practice.errors import MismatchedTopology, SignPracticeError
from sign_practice.keypoints import SignTemplate, TemplateLibrary, as_keypoints
from sign_practice.scoring import D_MAX, match_confidence
from sign_practice.session import CaptureSession

app = typer.Typer(
    name="sign-practice",
    help="🤟 Live hand-sign practice with confidence feedback.",
    add_completion=False,
)

WINDOW_NAME = "sign-practice"


def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s  %(levelname)-5s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_library(path: str) -> TemplateLibrary:
    if not Path(path).exists():
        typer.echo(f"❌ Template file not found: {path}", err=True)
        raise typer.Exit(1)
    try:
        return TemplateLibrary.from_file(path)
    except (ValueError, KeyError, SignPracticeError) as e:
        typer.echo(f"❌ Invalid template file {path}: {e}", err=True)
        raise typer.Exit(1)


def _get_template(library: TemplateLibrary, sign: str) -> SignTemplate:
    template = library.get(sign)
    if template is None:
        typer.echo(f"❌ Unknown sign '{sign}'. Available: {', '.join(library.names) or 'none'}", err=True)
        raise typer.Exit(1)
    return template


def _build_session(cfg: EngineConfig, pose_source=None, **kwargs) -> CaptureSession:
    session = CaptureSession(
        pose_source if pose_source is not None else cfg.pose_estimator(),
        constraints=cfg.capture,
        feedback=cfg.feedback_machine(),
        d_max=cfg.scoring.d_max,
        stop_timeout=cfg.scheduler.stop_timeout,
        **kwargs,
    )
    session.profiler.enabled = cfg.scheduler.profiling
    return session


def _echo_error(error: SignPracticeError):
    typer.echo(f"\n❌ {error.user_message}", err=True)
    typer.echo(f"   {error}", err=True)


@app.command()
def practice(
    templates: str = typer.Argument(..., help="Template library JSON file"),
    sign: str = typer.Option(..., "--sign", "-s", help="Name of the sign to practice"),
    config: Optional[str] = typer.Option(None, help="Path to engine YAML config"),
    camera: Optional[int] = typer.Option(None, help="Camera device index (overrides config)"),
    duration: float = typer.Option(0, help="Seconds to practice (0 = until q / Ctrl+C)"),
    display: bool = typer.Option(True, help="Show the camera with an overlay"),
    record: Optional[str] = typer.Option(None, help="Save the keypoint stream to this file"),
    log_level: str = typer.Option("warning", help="Log level"),
):
    """Practice a sign live from the camera."""
    _setup_logging(log_level)
    cfg = load_config(config)
    if camera is not None:
        cfg.capture = replace(cfg.capture, device_index=camera)
    template = _get_template(_load_library(templates), sign)

    typer.echo(f"🎥 Practicing '{template.name}'. Press q in the window or Ctrl+C to stop")
    try:
        asyncio.run(_run_practice(cfg, template, duration, display, record))
    except SignPracticeError as e:
        _echo_error(e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass


async def _run_practice(
    cfg: EngineConfig,
    template: SignTemplate,
    duration: float,
    display: bool,
    record_path: Optional[str],
):
    session = _build_session(cfg)
    done = asyncio.Event()
    last_phase = None

    if display:
        import cv2
        from sign_practice.drawing import draw_overlay

    @session.on_frame
    def report(result):
        nonlocal last_phase
        phase = result.feedback.phase
        if phase is not last_phase:
            typer.echo(f"\n   → {phase.value}", nl=False)
            last_phase = phase
        if result.sample.frame_index % 15 == 0:
            typer.echo(
                f"\r   Confidence: {result.sample.value:3d}% | Best: {result.feedback.best_score:3d}%",
                nl=False,
            )
        if display and result.frame is not None:
            cv2.imshow(WINDOW_NAME, draw_overlay(result.frame.copy(), result, sign=template.name))
            if cv2.waitKey(1) & 0xFF in (ord("q"), 27):
                done.set()

    @session.on_mastery
    def mastered(event):
        typer.echo(f"\n🎉 Mastered '{event.template}' with {event.best_score}% confidence!")

    @session.on_error
    def failed(error):
        if isinstance(error, SignPracticeError):
            _echo_error(error)
        done.set()

    recorder = None
    if record_path:
        from sign_practice.recorder import SessionRecorder
        recorder = SessionRecorder()
        recorder.attach(session)

    async with session:
        session.activate(template)
        await session.start()
        if recorder:
            recorder.start()
        try:
            await asyncio.wait_for(done.wait(), duration if duration > 0 else None)
        except asyncio.TimeoutError:
            pass
        finally:
            await session.stop()
            if display:
                cv2.destroyAllWindows()

    _print_summary(session)
    if recorder:
        recorder.stop()
        recorder.save(record_path)
        typer.echo(f"💾 Saved {recorder.frame_count} frames to: {record_path}")


def _print_summary(session: CaptureSession):
    summary = session.profiler.summary()
    frames = summary["frames"]
    typer.echo("\n\n📊 Session:")
    typer.echo(
        f"   Frames:   {session.frames_emitted} scored, {frames['dropped']} dropped, "
        f"{frames['estimate_failure']} estimate failures, {frames['no_frame']} empty reads"
    )
    for name, s in summary["stages"].items():
        typer.echo(f"   {name:10s} avg={s['avg_ms']:.2f}ms  p95={s['p95_ms']:.2f}ms  max={s['max_ms']:.2f}ms")


def _load_points(ref: str, library: Optional[TemplateLibrary]):
    if library is not None and ref in library:
        return library[ref].keypoints
    path = Path(ref)
    if not path.exists():
        typer.echo(f"❌ Not a template name or file: {ref}", err=True)
        raise typer.Exit(1)
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("keypoints", data.get("handLandmarks"))
    return as_keypoints(data)


@app.command()
def score(
    current: str = typer.Argument(..., help="Keypoint JSON file or template name"),
    target: str = typer.Argument(..., help="Keypoint JSON file or template name"),
    templates: Optional[str] = typer.Option(None, help="Template library to resolve names from"),
    d_max: float = typer.Option(D_MAX, help="Distance at which confidence reaches 0"),
):
    """Score how closely CURRENT matches TARGET (0-100)."""
    library = _load_library(templates) if templates else None
    try:
        confidence = match_confidence(
            _load_points(current, library), _load_points(target, library), d_max
        )
    except (MismatchedTopology, ValueError, TypeError) as e:
        typer.echo(f"❌ Cannot compare: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Confidence: {confidence}%")


@app.command("templates")
def list_templates(
    path: str = typer.Argument(..., help="Template library JSON file"),
):
    """List the signs in a template library."""
    library = _load_library(path)
    typer.echo(f"📚 {len(library)} signs in {path}")
    for template in library:
        line = f"   {template.name:20s} {len(template.keypoints)} keypoints"
        if template.description:
            line += f"  - {template.description}"
        typer.echo(line)


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Recording file from `practice --record`"),
    templates: str = typer.Argument(..., help="Template library JSON file"),
    sign: str = typer.Option(..., "--sign", "-s", help="Name of the sign to score against"),
    fps: float = typer.Option(30.0, help="Replay frame rate"),
    config: Optional[str] = typer.Option(None, help="Path to engine YAML config"),
    log_level: str = typer.Option("warning", help="Log level"),
):
    """Replay a recorded session through the engine against a sign."""
    from sign_practice.recorder import RecordingPlayer

    _setup_logging(log_level)
    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    cfg = load_config(config)
    template = _get_template(_load_library(templates), sign)
    player = RecordingPlayer.load(path)
    typer.echo(f"▶️  Replaying {path.name} ({player.frame_count} frames, {player.duration:.1f}s)")

    try:
        fb = asyncio.run(_run_replay(cfg, player, template, fps))
    except SignPracticeError as e:
        _echo_error(e)
        raise typer.Exit(1)

    typer.echo(f"\n✅ Replay complete. Best: {fb.best_score}% | Mastered: {'yes' if fb.mastery_fired else 'no'}")


async def _run_replay(cfg: EngineConfig, player, template: SignTemplate, fps: float):
    from sign_practice.recorder import RecordedPoseSource, ReplayDevice
    from sign_practice.scheduler import PacedClock

    source = RecordedPoseSource(player)
    session = _build_session(cfg, source, device=ReplayDevice(), clock=PacedClock(fps))

    @session.on_frame
    def report(result):
        typer.echo(
            f"   #{result.sample.frame_index:<5d} {result.sample.value:3d}%  {result.feedback.phase.value}"
        )

    @session.on_mastery
    def mastered(event):
        typer.echo(f"   🎉 Mastered '{event.template}' ({event.best_score}%)")

    async with session:
        session.activate(template)
        await session.start()
        while not source.exhausted and session.is_capturing:
            await asyncio.sleep(0.01)
        # dispose() resets feedback, so keep the snapshot
        feedback = session.feedback
        await session.stop()
    return feedback


def main():
    app()


if __name__ == "__main__":
    main()
