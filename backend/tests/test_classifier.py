"""
Tests for content-based type classification.

Detection must come from content, never from the filename; the filename
only has to agree.
"""

import io
import wave
import zipfile

import pytest

from conftest import make_image_bytes
from filetool.classify.classifier import TypeClassifier, declared_extension
from filetool.classify.markup import scan_markup
from filetool.classify.signatures import sniff_bytes
from filetool.errors import TypeMismatchError, UnsafeContentError, UnsupportedInputError
from filetool.routing.formats import InputClass

SAFE_SVG = (
    '<?xml version="1.0"?>\n'
    '<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">'
    '<rect width="10" height="10" fill="red"/></svg>'
)


def _wav_bytes() -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(8000)
        wav.writeframes(b"\x00\x00" * 800)
    return buffer.getvalue()


def _docx_bytes() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")
        archive.writestr("word/document.xml", "<document/>")
    return buffer.getvalue()


def _odt_bytes() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("mimetype", "application/vnd.oasis.opendocument.text")
        archive.writestr("content.xml", "<office/>")
    return buffer.getvalue()


@pytest.fixture
def classify(tmp_path):
    classifier = TypeClassifier()

    def _classify(data: bytes, name: str):
        path = tmp_path / "upload.part"
        path.write_bytes(data)
        return classifier.classify(path, name)

    return _classify


class TestSignatures:
    """Magic-byte sniffing."""

    def test_image_signatures(self):
        assert sniff_bytes(make_image_bytes("PNG")) == "png"
        assert sniff_bytes(make_image_bytes("JPEG")) == "jpg"
        assert sniff_bytes(make_image_bytes("GIF")) == "gif"
        assert sniff_bytes(make_image_bytes("BMP")) == "bmp"
        assert sniff_bytes(make_image_bytes("TIFF")) == "tiff"

    def test_iso_bmff_brands(self):
        assert sniff_bytes(b"\x00\x00\x00\x18ftypisom" + b"\x00" * 16) == "mp4"
        assert sniff_bytes(b"\x00\x00\x00\x18ftypM4A " + b"\x00" * 16) == "m4a"
        assert sniff_bytes(b"\x00\x00\x00\x18ftypqt  " + b"\x00" * 16) == "mov"
        assert sniff_bytes(b"\x00\x00\x00\x18ftypheic" + b"\x00" * 16) is None

    def test_ebml_doctype(self):
        assert sniff_bytes(b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01webm" + b"\x00" * 8) == "webm"
        assert sniff_bytes(b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01matroska" + b"\x00" * 8) == "mkv"

    def test_text_detection(self):
        assert sniff_bytes(b"just some notes\n") == "txt"
        assert sniff_bytes(b'{"a": 1}') == "json"
        assert sniff_bytes(b"<!DOCTYPE html><html></html>") == "html"
        assert sniff_bytes(SAFE_SVG.encode()) == "svg"
        assert sniff_bytes("naïve café\n".encode("utf-8")) == "txt"

    def test_inline_svg_in_html_is_html(self):
        page = b'<!DOCTYPE html><html><body><svg viewBox="0 0 8 8"><path d="M0 0h8v8z"/></svg></body></html>'
        assert sniff_bytes(page) == "html"
        fragment = b'<html lang="en"><svg></svg></html>'
        assert sniff_bytes(fragment) == "html"

    def test_svg_root_after_prolog(self):
        svg = (
            b'<?xml version="1.0" encoding="UTF-8"?>\n'
            b"<!-- exported <svg> from an editor -->\n"
            b'<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" "http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd">\n'
            b'<svg xmlns="http://www.w3.org/2000/svg"/>'
        )
        assert sniff_bytes(svg) == "svg"

    def test_svg_mentioned_inside_other_xml(self):
        feed = b'<?xml version="1.0"?><feed><entry><svg/></entry></feed>'
        assert sniff_bytes(feed) == "xml"

    def test_text_starting_with_bm_is_not_bitmap(self):
        assert sniff_bytes(b"BMW service log for the week\n") == "txt"

    def test_binary_garbage(self):
        assert sniff_bytes(b"\x00\x01\x02\x03\xfe\xfd" * 20) is None


class TestClassifier:
    """Reconciliation of declared extension and detected content."""

    def test_png_detected(self, classify):
        result = classify(make_image_bytes("PNG"), "photo.png")
        assert result.format == "png"
        assert result.input_class == InputClass.IMAGE

    def test_extension_synonym_accepted(self, classify):
        assert classify(make_image_bytes("JPEG"), "photo.jpeg").format == "jpg"
        assert classify(make_image_bytes("TIFF"), "scan.TIF").format == "tiff"

    def test_content_wins_without_extension(self, classify):
        assert classify(make_image_bytes("PNG"), "photo").format == "png"

    def test_mismatch_rejected(self, classify):
        with pytest.raises(TypeMismatchError) as exc_info:
            classify(make_image_bytes("PNG"), "report.pdf")
        assert exc_info.value.declared == "pdf"
        assert exc_info.value.detected == "png"

    def test_declared_text_format_wins_over_generic_text(self, classify):
        assert classify(b"# Title\n\nBody\n", "README.md").format == "md"
        assert classify(b"a,b\n1,2\n", "data.csv").format == "csv"

    def test_unknown_extension_on_text_keeps_detection(self, classify):
        result = classify(b"plain words\n", "notes.conf")
        assert result.format == "txt"
        assert result.input_class == InputClass.TEXT

    def test_binary_extension_on_text_is_mismatch(self, classify):
        with pytest.raises(TypeMismatchError):
            classify(b"plain words\n", "song.mp3")

    def test_undetectable_rejected_unless_allow_listed(self, classify):
        garbage = b"\x00\x01\x02\x03\xfe\xfd" * 20
        with pytest.raises(UnsupportedInputError):
            classify(garbage, "mystery.xyz")
        assert classify(garbage, "blob.bin").format == "bin"
        assert classify(garbage, "archive.tar").format == "tar"

    def test_wav(self, classify):
        result = classify(_wav_bytes(), "tone.wav")
        assert result.format == "wav"
        assert result.input_class == InputClass.AUDIO

    def test_container_family_trusts_declared(self, classify):
        mp4_head = b"\x00\x00\x00\x18ftypisom" + b"\x00" * 64
        assert classify(mp4_head, "voice.m4a").format == "m4a"

    def test_office_containers(self, classify):
        assert classify(_docx_bytes(), "letter.docx").format == "docx"
        assert classify(_odt_bytes(), "letter.odt").format == "odt"
        assert classify(_docx_bytes(), "bundle.zip").format == "zip"
        with pytest.raises(TypeMismatchError):
            classify(_docx_bytes(), "letter.xlsx")

    def test_ole_compound_uses_declared_kind(self, classify):
        ole = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 504
        assert classify(ole, "budget.xls").format == "xls"
        assert classify(ole, "legacy").format == "doc"
        with pytest.raises(TypeMismatchError):
            classify(ole, "budget.pdf")

    def test_html_page_with_inline_icon(self, classify):
        page = (
            b"<!DOCTYPE html><html><head><title>Status</title></head><body>"
            b'<svg width="16" height="16"><circle cx="8" cy="8" r="8"/></svg>'
            b"<p>All systems normal</p></body></html>"
        )
        result = classify(page, "page.html")
        assert result.format == "html"
        assert result.input_class == InputClass.TEXT

    def test_safe_svg_accepted(self, classify):
        result = classify(SAFE_SVG.encode(), "icon.svg")
        assert result.format == "svg"
        assert result.input_class == InputClass.VECTOR

    @pytest.mark.parametrize(
        "payload",
        [
            '<svg xmlns="http://www.w3.org/2000/svg"><script>alert(1)</script></svg>',
            '<svg xmlns="http://www.w3.org/2000/svg" onload="alert(1)"></svg>',
            '<svg xmlns="http://www.w3.org/2000/svg"><a href="javascript:alert(1)">x</a></svg>',
            '<svg xmlns="http://www.w3.org/2000/svg"><image href="https://evil.example/x.png"/></svg>',
            '<svg xmlns="http://www.w3.org/2000/svg"><foreignObject></foreignObject></svg>',
            '<?xml version="1.0"?><!DOCTYPE svg [<!ENTITY x "y">]><svg></svg>',
        ],
    )
    def test_unsafe_svg_rejected(self, classify, payload):
        with pytest.raises(UnsafeContentError):
            classify(payload.encode(), "icon.svg")


class TestMarkupScan:
    """Direct rule checks."""

    def test_clean_markup(self):
        verdict = scan_markup(SAFE_SVG)
        assert verdict.safe
        assert verdict.reason is None

    def test_on_words_in_text_content(self):
        svg = (
            '<svg xmlns="http://www.w3.org/2000/svg">'
            "<text x=\"1\" y=\"9\">players online = 5, one = 1</text></svg>"
        )
        assert scan_markup(svg).safe

    @pytest.mark.parametrize(
        "svg",
        [
            '<svg onload="alert(1)"></svg>',
            "<svg/onload=alert(1)>",
            '<svg><rect\n  onclick = "x()"/></svg>',
            '<svg><g title="a>b" onmouseover="x()"></g></svg>',
        ],
    )
    def test_event_handler_attributes(self, svg):
        assert "event handler attribute" in scan_markup(svg).findings

    def test_findings_are_listed(self):
        verdict = scan_markup('<svg><script/><iframe src="x"/></svg>')
        assert not verdict.safe
        assert "script element" in verdict.findings
        assert "embedded frame" in verdict.findings


def test_declared_extension():
    assert declared_extension("Photo.JPEG") == "jpeg"
    assert declared_extension("archive.tar.gz") == "gz"
    assert declared_extension("noext") == ""
