from __future__ import annotations

import argparse
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeRemainingColumn

from .audio import write_wav
from .batch import FfmpegEncoder, generate_all
from .config import (
    DEFAULT_BITRATE_KBPS,
    DEFAULT_OUTPUT_GAIN,
    QUICK_FREQUENCIES,
    SAMPLE_RATE,
    SESSION_SECONDS,
    SEVERITIES,
    SUPPORTED_FREQUENCIES,
    default_output_dir,
    load_profile,
)
from .logging_utils import configure_logging, debug_enabled, get_log_path, log_exception
from .playback import MixingGraph, open_output, sounddevice_available
from .render import OfflineRenderer, RenderHooks
from .session import TreatmentSession

_LOGGER = logging.getLogger("untinnitus.cli")
_CONSOLE = Console()


def _doctor_report(lines: Iterable[str]) -> None:
    for line in lines:
        _CONSOLE.print(line)


@contextmanager
def _render_progress(description: str) -> Iterator[RenderHooks]:
    progress = Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        console=_CONSOLE,
        transient=True,
    )
    task = progress.add_task(description, total=None)

    def _on_start(num_chunks: int) -> None:
        progress.reset(task, total=num_chunks)

    def _on_chunk(index: int, num_chunks: int) -> None:
        progress.update(task, completed=index + 1, total=num_chunks)

    with progress:
        yield RenderHooks(on_start=_on_start, on_chunk=_on_chunk)


def _add_profile_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--frequency",
        type=float,
        required=True,
        help=f"Tinnitus frequency in Hz (supported: {', '.join(map(str, SUPPORTED_FREQUENCIES))}).",
    )
    parser.add_argument(
        "--severity",
        choices=list(SEVERITIES),
        default="normal",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="untinnitus")
    sub = parser.add_subparsers(dest="command", required=True)

    render = sub.add_parser("render", help="Render one treatment profile to a WAV file.")
    _add_profile_arguments(render)
    render.add_argument("--duration", type=float, default=SESSION_SECONDS)
    render.add_argument("--sample-rate", type=int, default=SAMPLE_RATE)
    render.add_argument("--seed", type=int, default=None)
    render.add_argument("--workers", type=int, default=1)
    render.add_argument("--output", type=Path, default=Path("untinnitus.wav"))

    batch = sub.add_parser("batch", help="Pre-render MP3 files for every frequency and profile.")
    batch.add_argument("--quick", action="store_true", help="Only render 8000 Hz.")
    batch.add_argument("--output-dir", type=Path, default=None)
    batch.add_argument("--duration", type=float, default=SESSION_SECONDS)
    batch.add_argument("--bitrate", type=int, default=DEFAULT_BITRATE_KBPS)
    batch.add_argument("--seed", type=int, default=None)
    batch.add_argument("--keep-wav", action="store_true")

    play = sub.add_parser("play", help="Play a live treatment session.")
    _add_profile_arguments(play)
    play.add_argument("--gain", type=float, default=DEFAULT_OUTPUT_GAIN)
    play.add_argument("--duration", type=float, default=SESSION_SECONDS)
    play.add_argument("--seed", type=int, default=None)

    sub.add_parser("doctor", help="Check ffmpeg, audio output and log paths.")
    return parser


def _run_render(args: argparse.Namespace) -> int:
    profile = load_profile(
        {"tinnitus_frequency_hz": args.frequency, "hearing_severity": args.severity}
    )
    with _render_progress(f"Rendering {profile.tinnitus_frequency_hz:g} Hz") as hooks:
        renderer = OfflineRenderer(seed=args.seed, hooks=hooks, workers=args.workers)
        buffer = renderer.render(profile, args.duration, args.sample_rate)
    path = write_wav(args.output, buffer)
    _CONSOLE.print(f"Wrote {path} ({buffer.duration:.0f}s, sr={buffer.sample_rate})")
    return 0


def _run_batch(args: argparse.Namespace) -> int:
    frequencies = QUICK_FREQUENCIES if args.quick else SUPPORTED_FREQUENCIES
    output_dir = args.output_dir or default_output_dir()

    def _on_item(position: int, total: int, stem: str) -> None:
        _CONSOLE.print(f"[{position}/{total}] {stem}")

    with _render_progress("Rendering") as hooks:
        report = generate_all(
            output_dir,
            frequencies=frequencies,
            total_seconds=args.duration,
            bitrate_kbps=args.bitrate,
            seed=args.seed,
            keep_wav=args.keep_wav,
            hooks=hooks,
            on_item=_on_item,
        )
    _CONSOLE.print(
        f"Generated {len(report.generated)}, skipped {len(report.skipped)}, "
        f"failed {len(report.failed)} ({report.total_bytes / 1024**3:.2f} GB in {output_dir})"
    )
    for stem, reason in report.failed.items():
        _CONSOLE.print(f"[red]x[/red] {stem}: {reason}")
    return 0 if report.ok else 1


def _run_play(args: argparse.Namespace) -> int:
    graph = MixingGraph(SAMPLE_RATE)
    session = TreatmentSession(graph, seed=args.seed, session_seconds=args.duration)
    session.confirm_frequency(args.frequency)
    session.confirm_severity(args.severity)
    session.set_output_gain(args.gain)
    with open_output(graph):
        _CONSOLE.print("Playing treatment. Press Ctrl+C to stop.")
        try:
            completed = session.run()
        except KeyboardInterrupt:
            session.stop()
            completed = False
    _CONSOLE.print("Treatment complete." if completed else "Treatment stopped.")
    return 0


def _run_doctor() -> int:
    ffmpeg = FfmpegEncoder().resolve()
    _doctor_report(
        [
            f"ffmpeg: {ffmpeg or 'not found'}",
            f"sounddevice available: {sounddevice_available()}",
            f"Log file: {get_log_path()}",
            f"Default batch output: {default_output_dir()}",
            "Hints:",
            "- Install ffmpeg to run `untinnitus batch`.",
            "- Install untinnitus[playback] for `untinnitus play`.",
        ]
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "render":
            return _run_render(args)
        if args.command == "batch":
            return _run_batch(args)
        if args.command == "play":
            return _run_play(args)
        if args.command == "doctor":
            return _run_doctor()

        parser.print_help()
        return 1
    except Exception as exc:
        _LOGGER.warning("untinnitus CLI failed: %s", exc, exc_info=debug_enabled())
        path = log_exception("untinnitus CLI", exc)
        _CONSOLE.print(f"[bold red]{type(exc).__name__}[/bold red]: {exc}")
        if path is not None:
            _CONSOLE.print(f"Logs: {path}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
