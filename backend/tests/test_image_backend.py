"""
Tests for the Pillow image backend.

Pure geometry helpers are tested directly; encoding goes through
produce() with a real workspace. SVG rasterization is checked against a
mocked ProcessRunner.
"""

import io
from unittest.mock import MagicMock

import pytest
from PIL import Image, features

from conftest import make_image_bytes
from filetool.backends.image import ImageBackend, clamp_crop, fit_dimensions
from filetool.capabilities.registry import ToolName
from filetool.errors import ProcessingFailure
from filetool.execution.workspace import WorkspaceFactory
from filetool.jobs.models import CropRect, EditDescriptor, InputArtifact, JobOptions
from filetool.routing.formats import InputClass
from filetool.routing.router import FormatRouter, Operation


@pytest.fixture
def workspace(tmp_path):
    ws = WorkspaceFactory(tmp_path).open("image")
    yield ws
    ws.close()


@pytest.fixture
def backend(all_tools):
    return ImageBackend(all_tools, MagicMock())


def _store(workspace, data: bytes, fmt: str, name: str = "photo.png") -> InputArtifact:
    path = workspace.file(f"input.{fmt}")
    path.write_bytes(data)
    return InputArtifact(
        path=path,
        original_name=name,
        declared_extension=fmt,
        format=fmt,
        input_class=InputClass.IMAGE if fmt != "svg" else InputClass.VECTOR,
        size_bytes=len(data),
    )


def _produce(backend, workspace, source, target, operation=Operation.CONVERT, **options):
    route = FormatRouter().route(source.format, target, operation)
    artifact = backend.produce(source, route, JobOptions(**options), workspace)
    return artifact, Image.open(io.BytesIO(artifact.path.read_bytes()))


class TestGeometry:

    def test_fit_inside_box_preserves_aspect(self):
        assert fit_dimensions((1920, 1080), 960, None) == (960, 540)
        assert fit_dimensions((1920, 1080), None, 540) == (960, 540)
        assert fit_dimensions((1920, 1080), 500, 500) == (500, 281)

    def test_no_upscale_by_default(self):
        assert fit_dimensions((100, 50), 400, None) == (100, 50)
        assert fit_dimensions((100, 50), 400, None, upscale=True) == (400, 200)

    def test_no_box_keeps_size(self):
        assert fit_dimensions((123, 45), None, None) == (123, 45)

    def test_crop_is_clamped(self):
        assert clamp_crop((100, 80), -10, -5, 50, 40) == (0, 0, 40, 35)
        assert clamp_crop((100, 80), 60, 60, 100, 100) == (60, 60, 100, 80)
        assert clamp_crop((100, 80), 150, 10, 20, 20) is None


class TestRequiredTool:

    def test_tools(self, backend):
        assert backend.required_tool("svg", "png") == ToolName.IMAGEMAGICK
        assert backend.required_tool("png", "avif") == ToolName.PILLOW_AVIF
        assert backend.required_tool("png", "webp") == ToolName.PILLOW_WEBP
        assert backend.required_tool("png", "jpg") is None


class TestEncoding:

    def test_png_to_jpg_keeps_dimensions(self, backend, workspace):
        source = _store(workspace, make_image_bytes("PNG", size=(320, 200)), "png")
        artifact, img = _produce(backend, workspace, source, "jpg")

        assert artifact.mime_type == "image/jpeg"
        assert artifact.path.name == "output.jpg"
        assert img.format == "JPEG"
        assert img.size == (320, 200)

    def test_alpha_flattened_on_white_for_jpg(self, backend, workspace):
        transparent = make_image_bytes("PNG", size=(8, 8), mode="RGBA", color=(0, 0, 0, 0))
        source = _store(workspace, transparent, "png")
        _, img = _produce(backend, workspace, source, "jpg", quality=100)

        assert img.mode == "RGB"
        r, g, b = img.getpixel((4, 4))
        assert min(r, g, b) > 240

    @pytest.mark.parametrize("quality", [1, 100])
    def test_quality_extremes_produce_output(self, backend, workspace, quality):
        source = _store(workspace, make_image_bytes("PNG", size=(64, 64)), "png")
        artifact, img = _produce(backend, workspace, source, "jpg", quality=quality)
        assert artifact.size_bytes > 0
        assert img.format == "JPEG"

    def test_lower_quality_is_smaller(self, backend, workspace):
        noisy = Image.effect_noise((256, 256), 64).convert("RGB")
        buffer = io.BytesIO()
        noisy.save(buffer, "PNG")
        source = _store(workspace, buffer.getvalue(), "png")

        low, _ = _produce(backend, workspace, source, "jpg", quality=10)
        low_size = low.size_bytes
        high, _ = _produce(backend, workspace, source, "jpg", quality=95)
        assert low_size < high.size_bytes

    def test_resize_fits_box(self, backend, workspace):
        source = _store(workspace, make_image_bytes("PNG", size=(400, 200)), "png")
        _, img = _produce(backend, workspace, source, "gif", width=100, height=100)
        assert img.size == (100, 50)

    def test_rotate_then_crop(self, backend, workspace):
        source = _store(workspace, make_image_bytes("PNG", size=(40, 20)), "png")
        edits = EditDescriptor(rotate=90, crop=CropRect(left=0, top=0, width=10, height=30))
        _, img = _produce(backend, workspace, source, "png", edits=edits)
        # 40x20 rotated becomes 20x40, then cropped to 10x30
        assert img.size == (10, 30)

    def test_crop_outside_image_fails(self, backend, workspace):
        source = _store(workspace, make_image_bytes("PNG", size=(40, 20)), "png")
        edits = EditDescriptor(crop=CropRect(left=100, top=100, width=10, height=10))
        with pytest.raises(ProcessingFailure):
            _produce(backend, workspace, source, "jpg", edits=edits)

    def test_same_format_compress(self, backend, workspace):
        source = _store(workspace, make_image_bytes("PNG", size=(50, 50)), "png")
        artifact, img = _produce(backend, workspace, source, "png", operation=Operation.COMPRESS)
        assert img.format == "PNG"
        assert artifact.format == "png"

    def test_image_to_pdf(self, backend, workspace):
        source = _store(workspace, make_image_bytes("PNG", size=(50, 50)), "png")
        route = FormatRouter().route("png", "pdf")
        artifact = backend.produce(source, route, JobOptions(), workspace)
        assert artifact.path.read_bytes().startswith(b"%PDF")
        assert artifact.mime_type == "application/pdf"

    @pytest.mark.skipif(not features.check("webp"), reason="Pillow built without WebP")
    def test_png_to_webp(self, backend, workspace):
        source = _store(workspace, make_image_bytes("PNG", size=(1920, 1080)), "png")
        artifact, img = _produce(backend, workspace, source, "webp")
        assert img.format == "WEBP"
        assert img.size == (1920, 1080)

    def test_corrupt_input_fails(self, backend, workspace):
        source = _store(workspace, b"\x89PNG\r\n\x1a\n" + b"\x00" * 32, "png")
        with pytest.raises(ProcessingFailure):
            _produce(backend, workspace, source, "jpg")


class TestSvgRasterization:

    def test_svg_goes_through_imagemagick(self, all_tools, workspace):
        runner = MagicMock()

        def fake_magick(argv, ws, tool):
            # Simulate ImageMagick writing the raster
            Image.new("RGBA", (30, 30), (0, 0, 255, 255)).save(argv[-1], "PNG")

        runner.run.side_effect = fake_magick
        backend = ImageBackend(all_tools, runner)
        source = _store(workspace, b"<svg xmlns='http://www.w3.org/2000/svg'/>", "svg", name="icon.svg")

        artifact, img = _produce(backend, workspace, source, "png")

        argv = runner.run.call_args[0][0]
        assert argv[0] == "imagemagick"
        assert argv[1:5] == ["-density", "144", "-background", "none"]
        assert argv[-1].endswith("raster.png")
        assert runner.run.call_args[1]["tool"] == "imagemagick"
        assert img.size == (30, 30)

    def test_svg_without_imagemagick(self, no_tools, workspace):
        from filetool.errors import ToolUnavailableError

        backend = ImageBackend(no_tools, MagicMock())
        source = _store(workspace, b"<svg/>", "svg", name="icon.svg")
        with pytest.raises(ToolUnavailableError):
            _produce(backend, workspace, source, "png")
