"""
Image backend (Pillow).

Raster re-encode with optional edits and resize. SVG inputs are first
rasterized to PNG by ImageMagick inside the workspace.

Pipeline order:
1. Rasterize (SVG only)
2. Rotate clockwise
3. Crop (clamped to the image)
4. Fit inside width × height, never upscaling unless asked
5. Encode for the target format at the requested quality
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, TYPE_CHECKING

from PIL import Image, ImageOps, UnidentifiedImageError

from ..capabilities.registry import ToolName
from ..errors import ProcessingFailure
from ..routing.router import BackendKind
from .base import Backend, OutputArtifact

if TYPE_CHECKING:
    from ..execution.workspace import Workspace
    from ..jobs.models import EditDescriptor, InputArtifact, JobOptions
    from ..routing.router import RouteDecision

logger = logging.getLogger(__name__)

SVG_RASTER_DENSITY = 144

# Pillow format names per canonical token
PILLOW_FORMATS = {
    "jpg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "gif": "GIF",
    "bmp": "BMP",
    "tiff": "TIFF",
    "pdf": "PDF",
}

# Targets that cannot carry an alpha channel
_NO_ALPHA = frozenset({"jpg", "bmp", "pdf"})


class ImageBackend(Backend):
    """Raster image conversion and compression."""

    @property
    def kind(self) -> BackendKind:
        return BackendKind.IMAGE

    def required_tool(self, input_format: str, target_format: str) -> Optional[ToolName]:
        if input_format == "svg":
            return ToolName.IMAGEMAGICK
        if target_format == "avif" or input_format == "avif":
            return ToolName.PILLOW_AVIF
        if target_format == "webp" or input_format == "webp":
            return ToolName.PILLOW_WEBP
        return None

    def produce(
        self,
        source: "InputArtifact",
        route: "RouteDecision",
        options: "JobOptions",
        workspace: "Workspace",
    ) -> OutputArtifact:
        target = route.target_format
        if target not in PILLOW_FORMATS:
            raise ProcessingFailure(f"Image backend cannot encode {target.upper()}")

        raster_path = source.path
        if source.format == "svg":
            raster_path = self._rasterize_svg(source.path, workspace)

        output = self.output_path(workspace, route)
        try:
            with Image.open(raster_path) as opened:
                opened.load()
                img = ImageOps.exif_transpose(opened) or opened
                original_size = img.size
                if options.edits is not None and not options.edits.is_empty:
                    img = apply_edits(img, options.edits)
                if options.has_resize:
                    img = fit_inside(img, options.width, options.height, options.upscale)
                self._encode(img, output, target, options.quality)
        except UnidentifiedImageError as e:
            raise ProcessingFailure(f"Could not decode image: {e}") from e
        except OSError as e:
            raise ProcessingFailure(f"Image encoding failed: {e}") from e

        logger.info(
            f"[Image] Job {workspace.job_id}: {source.format} {original_size[0]}x{original_size[1]} "
            f"-> {target} q={options.quality}"
        )
        return OutputArtifact.from_path(output, target)

    # ------------------------------------------------------------------
    # SVG
    # ------------------------------------------------------------------

    def _rasterize_svg(self, svg_path: Path, workspace: "Workspace") -> Path:
        magick = self.capabilities.executable(ToolName.IMAGEMAGICK)
        raster = workspace.file("raster.png")
        argv = [
            magick,
            "-density", str(SVG_RASTER_DENSITY),
            "-background", "none",
            str(svg_path),
            str(raster),
        ]
        self.runner.run(argv, workspace, tool=ToolName.IMAGEMAGICK.value)
        if not raster.exists():
            raise ProcessingFailure("ImageMagick produced no raster output", tool=ToolName.IMAGEMAGICK.value)
        return raster

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _encode(self, img: Image.Image, output: Path, target: str, quality: int) -> None:
        fmt = PILLOW_FORMATS[target]

        if target in _NO_ALPHA:
            img = flatten_alpha(img)
        elif img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")

        if target == "jpg":
            img.save(output, fmt, quality=quality, optimize=True)
        elif target in ("webp", "avif"):
            img.save(output, fmt, quality=quality)
        elif target == "png":
            img.save(output, fmt, optimize=True, compress_level=9)
        elif target == "tiff":
            img.save(output, fmt, compression="tiff_lzw")
        elif target == "gif":
            if img.mode in ("RGBA", "LA"):
                img = img.convert("RGBA").quantize(method=Image.Quantize.FASTOCTREE)
            elif img.mode != "P":
                img = img.convert("RGB").quantize()
            img.save(output, fmt, optimize=True)
        elif target == "pdf":
            img.save(output, fmt, resolution=72.0)
        else:
            img.save(output, fmt)


# ============================================================================
# PURE IMAGE OPERATIONS
# ============================================================================

def apply_edits(img: Image.Image, edits: "EditDescriptor") -> Image.Image:
    """Rotate clockwise, then crop (clamped)."""
    if edits.rotate:
        # Pillow rotates counter-clockwise
        img = img.rotate(-edits.rotate, expand=True)
    if edits.crop is not None:
        box = clamp_crop(
            img.size,
            edits.crop.left,
            edits.crop.top,
            edits.crop.width,
            edits.crop.height,
        )
        if box is None:
            raise ProcessingFailure("Crop area lies outside the image")
        img = img.crop(box)
    return img


def clamp_crop(
    size: Tuple[int, int],
    left: float,
    top: float,
    width: float,
    height: float,
) -> Optional[Tuple[int, int, int, int]]:
    """
    Clamp a crop box to the image.

    Returns:
        (left, top, right, bottom), or None when nothing of the box
        overlaps the image
    """
    img_w, img_h = size
    x0 = max(0, int(round(left)))
    y0 = max(0, int(round(top)))
    x1 = min(img_w, int(round(left + width)))
    y1 = min(img_h, int(round(top + height)))
    if x1 <= x0 or y1 <= y0:
        return None
    return x0, y0, x1, y1


def fit_inside(
    img: Image.Image,
    width: Optional[int],
    height: Optional[int],
    upscale: bool = False,
) -> Image.Image:
    """Resize to fit a width × height box preserving the aspect ratio."""
    target = fit_dimensions(img.size, width, height, upscale)
    if target == img.size:
        return img
    return img.resize(target, Image.Resampling.LANCZOS)


def fit_dimensions(
    size: Tuple[int, int],
    width: Optional[int],
    height: Optional[int],
    upscale: bool = False,
) -> Tuple[int, int]:
    """
    Dimensions that fit inside the box.

    A missing side is unconstrained. Without `upscale` the result never
    exceeds the original size.
    """
    src_w, src_h = size
    scales = []
    if width:
        scales.append(width / src_w)
    if height:
        scales.append(height / src_h)
    if not scales:
        return size

    scale = min(scales)
    if not upscale:
        scale = min(scale, 1.0)
    return max(1, round(src_w * scale)), max(1, round(src_h * scale))


def flatten_alpha(img: Image.Image, background: Tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    """Composite onto a solid background and drop alpha."""
    if img.mode == "P":
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        rgba = img.convert("RGBA")
        flat = Image.new("RGB", rgba.size, background)
        flat.paste(rgba, mask=rgba.getchannel("A"))
        return flat
    if img.mode != "RGB":
        return img.convert("RGB")
    return img
