"""
Document backend.

Tool per conversion:
- Office and text inputs → LibreOffice headless (`soffice --convert-to`)
- PDF → PDF (compress) → Ghostscript pdfwrite
- PDF → PNG/JPG (first page) → pdftoppm
- PDF → TXT → PyMuPDF text extraction
- Watermark on PDF output → PyMuPDF overlay

Concurrent soffice runs each get a private profile directory inside the
job workspace; a shared profile makes parallel conversions fail.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, TYPE_CHECKING

import fitz  # PyMuPDF

from ..capabilities.registry import ToolName
from ..errors import ProcessingFailure
from ..routing.formats import is_text_format
from ..routing.router import BackendKind
from .base import Backend, OutputArtifact

if TYPE_CHECKING:
    from ..execution.workspace import Workspace
    from ..jobs.models import InputArtifact, JobOptions
    from ..routing.router import RouteDecision

logger = logging.getLogger(__name__)

PDFTOPPM_RESOLUTION = 150

# soffice --convert-to filter per target (plain extension when omitted)
SOFFICE_FILTERS: Dict[str, str] = {
    "txt": "txt:Text (encoded):UTF8",
    "csv": "csv:Text - txt - csv (StarCalc):44,34,76",
}

# Text inputs soffice opens natively; the rest are fed as plain text
_SOFFICE_NATIVE_TEXT = frozenset({"txt", "html", "csv"})

WATERMARK_OPACITY = 0.25
WATERMARK_GREY = (0.5, 0.5, 0.5)
WATERMARK_ANGLE = 45


def pdf_settings_for_quality(quality: int) -> str:
    """Ghostscript -dPDFSETTINGS preset for a quality value."""
    if quality <= 40:
        return "/screen"
    if quality <= 75:
        return "/ebook"
    return "/printer"


class DocumentBackend(Backend):
    """Office, text and PDF conversions."""

    @property
    def kind(self) -> BackendKind:
        return BackendKind.DOCUMENT

    def required_tool(self, input_format: str, target_format: str) -> Optional[ToolName]:
        if input_format == "pdf":
            if target_format == "pdf":
                return ToolName.GHOSTSCRIPT
            if target_format in ("png", "jpg"):
                return ToolName.PDFTOPPM
            if target_format == "txt":
                return None
        return ToolName.SOFFICE

    def produce(
        self,
        source: "InputArtifact",
        route: "RouteDecision",
        options: "JobOptions",
        workspace: "Workspace",
    ) -> OutputArtifact:
        target = route.target_format
        output = self.output_path(workspace, route)

        if source.format == "pdf":
            if target == "pdf":
                self._compress_pdf(source.path, output, options.quality, workspace)
            elif target in ("png", "jpg"):
                self._rasterize_pdf(source.path, output, target, options.quality, workspace)
            elif target == "txt":
                extract_pdf_text(source.path, output)
            else:
                raise ProcessingFailure(f"Document backend cannot convert PDF to {target.upper()}")
        else:
            self._soffice_convert(source, output, target, workspace)

        if options.watermark and target == "pdf":
            apply_watermark(output, options.watermark)

        logger.info(f"[Document] Job {workspace.job_id}: {source.format} -> {target}")
        return OutputArtifact.from_path(output, target)

    # ------------------------------------------------------------------
    # LibreOffice
    # ------------------------------------------------------------------

    def build_soffice_command(
        self,
        soffice: str,
        source_path: Path,
        target: str,
        outdir: Path,
        profile_dir: Path,
    ) -> List[str]:
        return [
            soffice,
            "--headless",
            "--nologo",
            "--nolockcheck",
            "--nodefault",
            "--nofirststartwizard",
            "--norestore",
            f"-env:UserInstallation={profile_dir.resolve().as_uri()}",
            "--convert-to", SOFFICE_FILTERS.get(target, target),
            "--outdir", str(outdir),
            str(source_path),
        ]

    def _soffice_convert(
        self,
        source: "InputArtifact",
        output: Path,
        target: str,
        workspace: "Workspace",
    ) -> None:
        soffice = self.capabilities.executable(ToolName.SOFFICE)

        source_path = source.path
        if is_text_format(source.format) and source.format not in _SOFFICE_NATIVE_TEXT:
            source_path = workspace.file("source.txt")
            shutil.copyfile(source.path, source_path)

        outdir = workspace.subdir("soffice-out")
        profile = workspace.subdir("lo-profile")
        cmd = self.build_soffice_command(soffice, source_path, target, outdir, profile)
        self.runner.run(cmd, workspace, tool=ToolName.SOFFICE.value)

        produced = outdir / f"{source_path.stem}.{target}"
        if not produced.exists():
            candidates = sorted(outdir.glob(f"*.{target}"))
            if not candidates:
                raise ProcessingFailure(
                    f"LibreOffice produced no {target.upper()} output", tool=ToolName.SOFFICE.value
                )
            produced = candidates[0]
        os.replace(produced, output)

    # ------------------------------------------------------------------
    # Ghostscript
    # ------------------------------------------------------------------

    def build_gs_command(self, gs: str, input_path: Path, output_path: Path, quality: int) -> List[str]:
        return [
            gs,
            "-sDEVICE=pdfwrite",
            "-dCompatibilityLevel=1.4",
            f"-dPDFSETTINGS={pdf_settings_for_quality(quality)}",
            "-dNOPAUSE",
            "-dQUIET",
            "-dBATCH",
            "-dSAFER",
            f"-sOutputFile={output_path}",
            str(input_path),
        ]

    def _compress_pdf(self, input_path: Path, output: Path, quality: int, workspace: "Workspace") -> None:
        gs = self.capabilities.executable(ToolName.GHOSTSCRIPT)
        cmd = self.build_gs_command(gs, input_path, output, quality)
        self.runner.run(cmd, workspace, tool=ToolName.GHOSTSCRIPT.value)

    # ------------------------------------------------------------------
    # pdftoppm
    # ------------------------------------------------------------------

    def build_pdftoppm_command(
        self,
        pdftoppm: str,
        input_path: Path,
        output_base: Path,
        target: str,
        quality: int,
    ) -> List[str]:
        cmd = [pdftoppm]
        if target == "png":
            cmd.append("-png")
        else:
            cmd.extend(["-jpeg", "-jpegopt", f"quality={quality}"])
        cmd.extend([
            "-singlefile",
            "-f", "1",
            "-l", "1",
            "-r", str(PDFTOPPM_RESOLUTION),
            str(input_path),
            str(output_base),
        ])
        return cmd

    def _rasterize_pdf(
        self,
        input_path: Path,
        output: Path,
        target: str,
        quality: int,
        workspace: "Workspace",
    ) -> None:
        pdftoppm = self.capabilities.executable(ToolName.PDFTOPPM)
        output_base = workspace.file("page")
        cmd = self.build_pdftoppm_command(pdftoppm, input_path, output_base, target, quality)
        self.runner.run(cmd, workspace, tool=ToolName.PDFTOPPM.value)

        # pdftoppm appends its own extension (.png / .jpg)
        candidates = sorted(workspace.path.glob("page.*"))
        if not candidates:
            raise ProcessingFailure("pdftoppm produced no image", tool=ToolName.PDFTOPPM.value)
        os.replace(candidates[0], output)


# ============================================================================
# PyMuPDF helpers
# ============================================================================

def extract_pdf_text(input_path: Path, output: Path) -> None:
    """Write the text layer of every page, pages separated by form feeds."""
    try:
        with fitz.open(str(input_path)) as doc:
            pages = [doc.load_page(i).get_text("text") or "" for i in range(doc.page_count)]
    except (RuntimeError, ValueError) as e:
        raise ProcessingFailure(f"Could not read PDF: {e}") from e

    text = "\f".join(pages)
    if not text.strip():
        raise ProcessingFailure("PDF has no extractable text layer")
    output.write_text(text, encoding="utf-8")


def apply_watermark(pdf_path: Path, text: str) -> None:
    """
    Draw translucent diagonal text across every page, in place.

    Saved to a sibling file and swapped in; PyMuPDF cannot fully rewrite
    the file it has open.
    """
    tmp_path = pdf_path.with_name(pdf_path.stem + ".wm.pdf")
    try:
        with fitz.open(str(pdf_path)) as doc:
            for page in doc:
                rect = page.rect
                fontsize = max(18.0, min(96.0, min(rect.width, rect.height) / max(len(text), 1) * 1.4))
                text_width = fitz.get_text_length(text, fontname="helv", fontsize=fontsize)
                center = fitz.Point(rect.width / 2, rect.height / 2)
                origin = fitz.Point(center.x - text_width / 2, center.y + fontsize / 3)
                page.insert_text(
                    origin,
                    text,
                    fontsize=fontsize,
                    fontname="helv",
                    color=WATERMARK_GREY,
                    fill_opacity=WATERMARK_OPACITY,
                    stroke_opacity=WATERMARK_OPACITY,
                    morph=(center, fitz.Matrix(WATERMARK_ANGLE)),
                    overlay=True,
                )
            doc.save(str(tmp_path), garbage=3, deflate=True)
    except (RuntimeError, ValueError) as e:
        raise ProcessingFailure(f"Watermarking failed: {e}") from e
    os.replace(tmp_path, pdf_path)
