import subprocess
from pathlib import Path

import pytest

import untinnitus.batch as batch_module
from untinnitus.batch import BatchReport, FfmpegEncoder, generate_all, output_stem
from untinnitus.errors import EncodingFailure


class _FakeEncoder(FfmpegEncoder):
    def __init__(self, fail_stems: tuple[str, ...] = ()) -> None:
        super().__init__("fake-ffmpeg")
        self.fail_stems = set(fail_stems)
        self.converted: list[tuple[str, int]] = []

    def resolve(self) -> str | None:
        return "/usr/local/bin/fake-ffmpeg"

    def convert(self, wav_path: Path, bitrate_kbps: int = 128) -> Path:
        assert wav_path.exists()
        if wav_path.stem in self.fail_stems:
            raise EncodingFailure(f"cannot encode {wav_path.name}")
        mp3_path = wav_path.with_suffix(".mp3")
        mp3_path.write_bytes(b"ID3" + bytes(61))
        self.converted.append((wav_path.name, bitrate_kbps))
        return mp3_path


def _generate(tmp_path: Path, encoder: FfmpegEncoder, **kwargs) -> BatchReport:
    return generate_all(
        tmp_path / "audio",
        frequencies=(8000,),
        severities=("normal", "mild"),
        total_seconds=1.0,
        sample_rate=1000,
        encoder=encoder,
        seed=0,
        **kwargs,
    )


def test_output_stem() -> None:
    assert output_stem(8000, "severe") == "untinnitus-8000Hz-severe"
    assert output_stem(5700.0, "normal") == "untinnitus-5700Hz-normal"


def test_generates_every_profile(tmp_path: Path) -> None:
    encoder = _FakeEncoder()
    report = _generate(tmp_path, encoder, bitrate_kbps=96)

    assert report.ok
    assert [path.name for path in report.generated] == [
        "untinnitus-8000Hz-normal.mp3",
        "untinnitus-8000Hz-mild.mp3",
    ]
    assert [bitrate for _, bitrate in encoder.converted] == [96, 96]
    assert report.total_bytes == 2 * 64
    assert sorted(path.suffix for path in (tmp_path / "audio").iterdir()) == [".mp3", ".mp3"]


def test_keep_wav(tmp_path: Path) -> None:
    _generate(tmp_path, _FakeEncoder(), keep_wav=True)
    assert (tmp_path / "audio" / "untinnitus-8000Hz-mild.wav").exists()


def test_existing_files_are_skipped(tmp_path: Path) -> None:
    target = tmp_path / "audio"
    target.mkdir()
    (target / "untinnitus-8000Hz-normal.mp3").write_bytes(b"old")
    encoder = _FakeEncoder()
    report = _generate(tmp_path, encoder)

    assert [path.name for path in report.skipped] == ["untinnitus-8000Hz-normal.mp3"]
    assert [name for name, _ in encoder.converted] == ["untinnitus-8000Hz-mild.wav"]
    assert (target / "untinnitus-8000Hz-normal.mp3").read_bytes() == b"old"


def test_item_failure_does_not_stop_batch(tmp_path: Path) -> None:
    items: list[tuple[int, int, str]] = []
    report = _generate(
        tmp_path,
        _FakeEncoder(fail_stems=("untinnitus-8000Hz-normal",)),
        on_item=lambda position, total, stem: items.append((position, total, stem)),
    )

    assert not report.ok
    assert "untinnitus-8000Hz-normal" in report.failed
    assert [path.name for path in report.generated] == ["untinnitus-8000Hz-mild.mp3"]
    assert items == [
        (1, 2, "untinnitus-8000Hz-normal"),
        (2, 2, "untinnitus-8000Hz-mild"),
    ]


def test_missing_encoder_aborts_before_rendering(tmp_path: Path) -> None:
    encoder = FfmpegEncoder(binary="untinnitus-missing-ffmpeg-binary")
    assert encoder.resolve() is None
    with pytest.raises(EncodingFailure):
        _generate(tmp_path, encoder)
    assert not (tmp_path / "audio").exists()


def test_ffmpeg_command_line(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[list[str]] = []

    def _run(command: list[str], **kwargs) -> subprocess.CompletedProcess[str]:
        calls.append(command)
        Path(command[-1]).write_bytes(b"mp3")
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    monkeypatch.setattr(batch_module.shutil, "which", lambda name: f"/opt/bin/{name}")
    monkeypatch.setattr(batch_module.subprocess, "run", _run)
    wav = tmp_path / "tone.wav"
    wav.write_bytes(b"RIFF")

    mp3 = FfmpegEncoder().convert(wav, 96)
    assert mp3 == tmp_path / "tone.mp3"
    assert calls == [
        [
            "/opt/bin/ffmpeg",
            "-i",
            str(wav),
            "-codec:a",
            "libmp3lame",
            "-b:a",
            "96k",
            "-y",
            str(mp3),
        ]
    ]


def test_ffmpeg_failure_removes_partial_output(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _run(command: list[str], **kwargs) -> subprocess.CompletedProcess[str]:
        Path(command[-1]).write_bytes(b"partial")
        return subprocess.CompletedProcess(
            command, 1, stdout="", stderr="header\nInvalid data found when processing input"
        )

    monkeypatch.setattr(batch_module.shutil, "which", lambda name: f"/opt/bin/{name}")
    monkeypatch.setattr(batch_module.subprocess, "run", _run)
    wav = tmp_path / "tone.wav"
    wav.write_bytes(b"RIFF")

    with pytest.raises(EncodingFailure, match="Invalid data found"):
        FfmpegEncoder().convert(wav)
    assert not (tmp_path / "tone.mp3").exists()


def test_failed_item_does_not_leave_wav(tmp_path: Path) -> None:
    _generate(tmp_path, _FakeEncoder(fail_stems=("untinnitus-8000Hz-mild",)))
    assert not (tmp_path / "audio" / "untinnitus-8000Hz-mild.wav").exists()


def test_failed_item_keeps_wav_on_request(tmp_path: Path) -> None:
    _generate(tmp_path, _FakeEncoder(fail_stems=("untinnitus-8000Hz-mild",)), keep_wav=True)
    assert (tmp_path / "audio" / "untinnitus-8000Hz-mild.wav").exists()
