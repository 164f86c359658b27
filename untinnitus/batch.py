"""Pre-render treatment files for every frequency and hearing profile."""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from .audio import write_wav
from .config import (
    DEFAULT_BITRATE_KBPS,
    DEFAULT_SETTINGS,
    SAMPLE_RATE,
    SESSION_SECONDS,
    SEVERITIES,
    SUPPORTED_FREQUENCIES,
    HearingSeverity,
    SynthesisSettings,
    TreatmentProfile,
)
from .errors import EncodingFailure
from .logging_utils import debug_enabled, log_exception
from .render import OfflineRenderer, RenderHooks

_LOGGER = logging.getLogger("untinnitus.batch")


class FfmpegEncoder:
    """Converts WAV files to MP3 with an external ``ffmpeg`` binary."""

    def __init__(self, binary: str = "ffmpeg") -> None:
        self.binary = binary

    def resolve(self) -> str | None:
        return shutil.which(self.binary)

    def ensure_available(self) -> str:
        resolved = self.resolve()
        if resolved is None:
            raise EncodingFailure(
                f"{self.binary} not found. Install ffmpeg first "
                "(macOS: brew install ffmpeg, Ubuntu: sudo apt-get install ffmpeg)."
            )
        return resolved

    def convert(self, wav_path: Path, bitrate_kbps: int = DEFAULT_BITRATE_KBPS) -> Path:
        mp3_path = wav_path.with_suffix(".mp3")
        command = [
            self.ensure_available(),
            "-i",
            str(wav_path),
            "-codec:a",
            "libmp3lame",
            "-b:a",
            f"{bitrate_kbps}k",
            "-y",
            str(mp3_path),
        ]
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise EncodingFailure(f"Failed to launch {self.binary}: {exc}") from exc
        if result.returncode != 0:
            mp3_path.unlink(missing_ok=True)
            detail = result.stderr.strip().splitlines()[-1:] or ["no output"]
            raise EncodingFailure(
                f"{self.binary} exited with {result.returncode}: {detail[0]}"
            )
        return mp3_path


class BatchReport(BaseModel):
    generated: list[Path] = Field(default_factory=list)
    skipped: list[Path] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    total_bytes: int = 0

    model_config = ConfigDict(extra="forbid")

    @property
    def ok(self) -> bool:
        return not self.failed


def output_stem(frequency_hz: int | float, severity: HearingSeverity) -> str:
    return f"untinnitus-{frequency_hz:g}Hz-{severity}"


def generate_all(
    output_dir: str | Path,
    *,
    frequencies: Sequence[int | float] = SUPPORTED_FREQUENCIES,
    severities: Sequence[HearingSeverity] = SEVERITIES,
    total_seconds: float = SESSION_SECONDS,
    sample_rate: int = SAMPLE_RATE,
    bitrate_kbps: int = DEFAULT_BITRATE_KBPS,
    encoder: FfmpegEncoder | None = None,
    seed: int | None = None,
    keep_wav: bool = False,
    settings: SynthesisSettings = DEFAULT_SETTINGS,
    hooks: RenderHooks | None = None,
    on_item: Callable[[int, int, str], None] | None = None,
) -> BatchReport:
    """Render, encode and compress every (frequency, severity) pair.

    A missing encoder aborts the whole batch before any rendering; a failure
    on one item is logged and recorded, and the batch moves on.
    """

    encoder = encoder or FfmpegEncoder()
    encoder.ensure_available()

    target_dir = Path(output_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(seed)
    report = BatchReport()
    items = [(frequency, severity) for frequency in frequencies for severity in severities]

    _LOGGER.info(
        "Generating %d files into %s (frequencies: %s Hz)",
        len(items),
        target_dir,
        ", ".join(f"{frequency:g}" for frequency in frequencies),
    )
    for position, (frequency, severity) in enumerate(items, start=1):
        stem = output_stem(frequency, severity)
        if on_item is not None:
            on_item(position, len(items), stem)
        wav_path = target_dir / f"{stem}.wav"
        mp3_path = target_dir / f"{stem}.mp3"
        if mp3_path.exists():
            _LOGGER.info("[%d/%d] %s already exists, skipping", position, len(items), mp3_path.name)
            report.skipped.append(mp3_path)
            continue

        _LOGGER.info("[%d/%d] Generating %s", position, len(items), stem)
        try:
            profile = TreatmentProfile(tinnitus_frequency_hz=frequency, hearing_severity=severity)
            renderer = OfflineRenderer(rng=rng, settings=settings, hooks=hooks)
            buffer = renderer.render(profile, total_seconds, sample_rate)
            write_wav(wav_path, buffer)
            del buffer
            compressed = encoder.convert(wav_path, bitrate_kbps)
        except (EncodingFailure, OSError) as exc:
            _LOGGER.warning("Failed to generate %s: %s", stem, exc, exc_info=debug_enabled())
            log_exception(f"batch item {stem}", exc)
            report.failed[stem] = str(exc)
            if not keep_wav:
                wav_path.unlink(missing_ok=True)
            continue

        if not keep_wav:
            wav_path.unlink(missing_ok=True)
            _LOGGER.debug("Temporary WAV file deleted: %s", wav_path.name)
        size = compressed.stat().st_size
        _LOGGER.info("MP3 file created: %s (%.2f MB)", compressed.name, size / 1024 / 1024)
        report.generated.append(compressed)

    report.total_bytes = sum(path.stat().st_size for path in target_dir.glob("*.mp3"))
    _LOGGER.info(
        "Generation complete: %d generated, %d skipped, %d failed, %.2f GB total",
        len(report.generated),
        len(report.skipped),
        len(report.failed),
        report.total_bytes / 1024**3,
    )
    return report
