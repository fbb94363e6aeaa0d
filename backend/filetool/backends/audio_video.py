"""
Audio/video backend (ffmpeg).

Design rules:
- One ffmpeg invocation per job, argv only
- Quality maps linearly to bitrate with floors
- Audio-only targets drop the video stream
- Codecs chosen per container, never left to ffmpeg's guess
"""

import logging
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from ..capabilities.registry import ToolName
from ..routing.formats import FORMATS, InputClass
from ..routing.router import BackendKind
from .base import Backend, OutputArtifact

if TYPE_CHECKING:
    from ..execution.workspace import Workspace
    from ..jobs.models import InputArtifact, JobOptions
    from ..routing.router import RouteDecision

logger = logging.getLogger(__name__)

AUDIO_BITRATE_MAX_KBPS = 192
AUDIO_BITRATE_MIN_KBPS = 32
VIDEO_BITRATE_MAX_KBPS = 2500
VIDEO_BITRATE_MIN_KBPS = 200

# Container → (video codec, audio codec)
VIDEO_CODECS: Dict[str, Tuple[str, str]] = {
    "mp4": ("libx264", "aac"),
    "mov": ("libx264", "aac"),
    "mkv": ("libx264", "aac"),
    "webm": ("libvpx-vp9", "libopus"),
    "avi": ("mpeg4", "libmp3lame"),
    "mpeg": ("mpeg2video", "mp2"),
    "flv": ("libx264", "aac"),
    "wmv": ("wmv2", "wmav2"),
    "3gp": ("libx264", "aac"),
}

# Audio-only target → audio codec
AUDIO_CODECS: Dict[str, str] = {
    "mp3": "libmp3lame",
    "ogg": "libvorbis",
    "opus": "libopus",
    "m4a": "aac",
    "aac": "aac",
    "flac": "flac",
    "wav": "pcm_s16le",
}

# Lossless/PCM codecs take no bitrate
_NO_BITRATE = frozenset({"flac", "pcm_s16le"})


def audio_bitrate_kbps(quality: int) -> int:
    return max(AUDIO_BITRATE_MIN_KBPS, (quality * AUDIO_BITRATE_MAX_KBPS) // 100)


def video_bitrate_kbps(quality: int) -> int:
    return max(VIDEO_BITRATE_MIN_KBPS, (quality * VIDEO_BITRATE_MAX_KBPS) // 100)


def scale_filter(width: Optional[int], height: Optional[int]) -> Optional[str]:
    """
    ffmpeg scale expression.

    One side given: the other follows the aspect ratio (-2 keeps it even
    for the encoders). Both given: fit inside the box.
    """
    if width and height:
        return (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            "scale=trunc(iw/2)*2:trunc(ih/2)*2"
        )
    if width:
        return f"scale={width}:-2"
    if height:
        return f"scale=-2:{height}"
    return None


class AudioVideoBackend(Backend):
    """Audio and video transcoding through ffmpeg."""

    @property
    def kind(self) -> BackendKind:
        return BackendKind.AUDIO_VIDEO

    def required_tool(self, input_format: str, target_format: str) -> Optional[ToolName]:
        return ToolName.FFMPEG

    def build_command(
        self,
        ffmpeg: str,
        input_path: str,
        output_path: str,
        target_format: str,
        options: "JobOptions",
    ) -> List[str]:
        """
        Build the ffmpeg argument vector.

        Args:
            ffmpeg: Executable path
            input_path: Stored upload
            output_path: Output file inside the workspace
            target_format: Canonical target token
            options: Quality / size knobs

        Returns:
            argv list (never a shell string)
        """
        cmd = [ffmpeg, "-y", "-hide_banner", "-nostdin", "-i", input_path]

        audio_kbps = audio_bitrate_kbps(options.quality)

        if FORMATS[target_format].input_class == InputClass.AUDIO:
            codec = AUDIO_CODECS[target_format]
            cmd.extend(["-vn", "-c:a", codec])
            if codec not in _NO_BITRATE:
                cmd.extend(["-b:a", f"{audio_kbps}k"])
        else:
            video_codec, audio_codec = VIDEO_CODECS[target_format]
            cmd.extend([
                "-c:v", video_codec,
                "-b:v", f"{video_bitrate_kbps(options.quality)}k",
            ])
            if video_codec == "libx264":
                cmd.extend(["-pix_fmt", "yuv420p"])
            vf = scale_filter(options.width, options.height)
            if vf:
                cmd.extend(["-vf", vf])
            cmd.extend(["-c:a", audio_codec, "-b:a", f"{audio_kbps}k"])
            if target_format == "mp4":
                cmd.extend(["-movflags", "+faststart"])

        cmd.append(output_path)
        return cmd

    def produce(
        self,
        source: "InputArtifact",
        route: "RouteDecision",
        options: "JobOptions",
        workspace: "Workspace",
    ) -> OutputArtifact:
        ffmpeg = self.capabilities.executable(ToolName.FFMPEG)
        output = self.output_path(workspace, route)

        cmd = self.build_command(ffmpeg, str(source.path), str(output), route.target_format, options)
        self.runner.run(cmd, workspace, tool=ToolName.FFMPEG.value)

        logger.info(f"[AudioVideo] Job {workspace.job_id}: {source.format} -> {route.target_format}")
        return OutputArtifact.from_path(output, route.target_format)
