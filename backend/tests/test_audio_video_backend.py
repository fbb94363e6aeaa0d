"""
Tests for the ffmpeg audio/video backend.

Command construction is verified against a mocked ProcessRunner; no
ffmpeg binary is needed except for the guarded integration test.
"""

import io
import shutil
import wave
from unittest.mock import MagicMock

import pytest

from filetool.backends.audio_video import (
    AudioVideoBackend,
    audio_bitrate_kbps,
    scale_filter,
    video_bitrate_kbps,
)
from filetool.capabilities.registry import CapabilityRegistry, ToolName
from filetool.errors import ToolUnavailableError
from filetool.execution.process import ProcessRunner
from filetool.execution.workspace import WorkspaceFactory
from filetool.jobs.models import InputArtifact, JobOptions
from filetool.routing.formats import FORMATS, InputClass
from filetool.routing.router import BackendKind, FormatRouter, Operation


def _source(workspace, fmt="mp4"):
    path = workspace.file(f"input.{fmt}")
    path.write_bytes(b"\x00" * 64)
    return InputArtifact(
        path=path,
        original_name=f"clip.{fmt}",
        declared_extension=fmt,
        format=fmt,
        input_class=FORMATS[fmt].input_class,
        size_bytes=64,
    )


@pytest.fixture
def workspace(tmp_path):
    ws = WorkspaceFactory(tmp_path).open("av")
    yield ws
    ws.close()


class TestBitrates:

    def test_audio_bitrate(self):
        assert audio_bitrate_kbps(100) == 192
        assert audio_bitrate_kbps(80) == 153
        assert audio_bitrate_kbps(1) == 32

    def test_video_bitrate(self):
        assert video_bitrate_kbps(100) == 2500
        assert video_bitrate_kbps(80) == 2000
        assert video_bitrate_kbps(1) == 200


class TestScaleFilter:

    def test_width_only(self):
        assert scale_filter(1280, None) == "scale=1280:-2"

    def test_height_only(self):
        assert scale_filter(None, 720) == "scale=-2:720"

    def test_both_fit_inside(self):
        vf = scale_filter(1280, 720)
        assert vf.startswith("scale=1280:720:force_original_aspect_ratio=decrease")

    def test_none(self):
        assert scale_filter(None, None) is None


class TestCommandConstruction:

    def _command(self, target, **options):
        backend = AudioVideoBackend(CapabilityRegistry.from_mapping({}), MagicMock())
        return backend.build_command("ffmpeg", "in.x", f"out.{target}", target, JobOptions(**options))

    def test_audio_target_drops_video(self):
        cmd = self._command("mp3", quality=50)
        assert cmd[:6] == ["ffmpeg", "-y", "-hide_banner", "-nostdin", "-i", "in.x"]
        assert "-vn" in cmd
        assert cmd[cmd.index("-c:a") + 1] == "libmp3lame"
        assert cmd[cmd.index("-b:a") + 1] == "96k"
        assert cmd[-1] == "out.mp3"

    def test_lossless_audio_has_no_bitrate(self):
        cmd = self._command("flac")
        assert cmd[cmd.index("-c:a") + 1] == "flac"
        assert "-b:a" not in cmd

    def test_mp4_codecs_and_faststart(self):
        cmd = self._command("mp4", quality=80)
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-b:v") + 1] == "2000k"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-movflags") + 1] == "+faststart"
        assert "-vn" not in cmd

    def test_webm_codecs(self):
        cmd = self._command("webm")
        assert cmd[cmd.index("-c:v") + 1] == "libvpx-vp9"
        assert cmd[cmd.index("-c:a") + 1] == "libopus"

    def test_scale_applied_for_video(self):
        cmd = self._command("mp4", width=640)
        assert cmd[cmd.index("-vf") + 1] == "scale=640:-2"

    def test_never_a_shell_string(self):
        cmd = self._command("mkv")
        assert isinstance(cmd, list)
        assert all(isinstance(arg, str) for arg in cmd)

    @pytest.mark.parametrize(
        "fmt",
        sorted(t for t, spec in FORMATS.items() if spec.input_class in (InputClass.AUDIO, InputClass.VIDEO)),
    )
    def test_same_format_compress_has_codecs(self, fmt):
        route = FormatRouter().route(fmt, fmt, Operation.COMPRESS)
        assert route.backend == BackendKind.AUDIO_VIDEO

        cmd = self._command(route.target_format, quality=40)

        assert "-c:a" in cmd
        assert cmd[-1] == f"out.{fmt}"
        if FORMATS[fmt].input_class == InputClass.VIDEO:
            assert cmd[cmd.index("-b:v") + 1] == "1000k"

    def test_legacy_video_containers(self):
        mpeg = self._command("mpeg")
        assert mpeg[mpeg.index("-c:v") + 1] == "mpeg2video"
        wmv = self._command("wmv")
        assert wmv[wmv.index("-c:v") + 1] == "wmv2"
        assert wmv[wmv.index("-c:a") + 1] == "wmav2"
        flv = self._command("flv")
        assert flv[flv.index("-pix_fmt") + 1] == "yuv420p"


class TestProduce:

    def test_runner_receives_argv(self, workspace):
        runner = MagicMock()
        registry = CapabilityRegistry.from_mapping({ToolName.FFMPEG: "/opt/ffmpeg/bin/ffmpeg"})
        backend = AudioVideoBackend(registry, runner)
        source = _source(workspace, "mov")
        route = FormatRouter().route("mov", "mp3")

        artifact = backend.produce(source, route, JobOptions(), workspace)

        argv = runner.run.call_args[0][0]
        assert argv[0] == "/opt/ffmpeg/bin/ffmpeg"
        assert argv[-1] == str(workspace.file("output.mp3"))
        assert runner.run.call_args[1]["tool"] == "ffmpeg"
        assert artifact.mime_type == "audio/mpeg"

    def test_missing_ffmpeg(self, workspace, no_tools):
        runner = MagicMock()
        backend = AudioVideoBackend(no_tools, runner)
        route = FormatRouter().route("mp4", "webm")
        with pytest.raises(ToolUnavailableError):
            backend.produce(_source(workspace), route, JobOptions(), workspace)
        runner.run.assert_not_called()


@pytest.mark.tools
@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
def test_wav_to_mp3_with_real_ffmpeg(workspace):
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(8000)
        wav.writeframes(b"\x10\x00" * 8000)

    source = _source(workspace, "wav")
    source.path.write_bytes(buffer.getvalue())
    registry = CapabilityRegistry.probe()
    backend = AudioVideoBackend(registry, ProcessRunner())
    route = FormatRouter().route("wav", "mp3")

    artifact = backend.produce(source, route, JobOptions(quality=50), workspace)
    assert artifact.size_bytes > 0
