"""
Tests for document mutation.
"""
import io

import fitz  # PyMuPDF
import pytest
from PIL import Image

from signylite.engine.audit import build_audit_record
from signylite.engine.document import DocumentKind, load_document
from signylite.engine.errors import MissingInputError, PlacementOutOfRangeError, SerializeError
from signylite.engine.geometry import Color, PlacementSpec
from signylite.engine.mutate import DocumentMutator, date_stamp_text, suggested_filename
from signylite.engine.render import RasterImage, TiledPattern, TypedText


def _spans(page):
    return [
        span
        for block in page.get_text("dict")["blocks"]
        for line in block.get("lines", [])
        for span in line["spans"]
    ]


def _ink_bbox(page, threshold=128):
    """Bounding box of dark pixels on the page as displayed (rotation applied)."""
    pix = page.get_pixmap()
    image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
    return image.convert("L").point(lambda v: 255 if v < threshold else 0).getbbox()


def _audit(document):
    return build_audit_record(document.filename, document.fingerprint(), environment="Signylite test")


class TestTextOnPdf:
    """Typed text composited onto a PDF page."""

    @pytest.fixture
    def mutator(self):
        return DocumentMutator()

    def test_text_at_native_coordinates(self, mutator, sample_pdf_bytes):
        """Text run starts at (50, 65) measured from the bottom-left corner."""
        document = load_document(sample_pdf_bytes, "contract.pdf")
        output = mutator.mutate(document, PlacementSpec(page=1, x=50, y=65, size=18), TypedText("A. Dupont"))

        with fitz.open(stream=output.data, filetype="pdf") as doc:
            assert doc.page_count == 1
            spans = [s for s in _spans(doc[0]) if s["text"] == "A. Dupont"]

        assert len(spans) == 1
        x, y = spans[0]["origin"]
        assert x == pytest.approx(50, abs=0.5)
        assert y == pytest.approx(842 - 65, abs=0.5)
        assert spans[0]["size"] == pytest.approx(18, abs=0.1)

    def test_original_content_preserved(self, mutator, sample_pdf_bytes):
        document = load_document(sample_pdf_bytes)
        output = mutator.mutate(document, PlacementSpec(), TypedText("A. Dupont"))

        with fitz.open(stream=output.data, filetype="pdf") as doc:
            text = doc[0].get_text()

        assert "Test Document - page 1" in text
        assert "A. Dupont" in text

    def test_audit_appends_one_page(self, mutator, sample_pdf_bytes):
        """With audit enabled the output has exactly one more page."""
        document = load_document(sample_pdf_bytes, "contract.pdf")
        output = mutator.mutate(
            document,
            PlacementSpec(page=1, x=50, y=65, size=18),
            TypedText("A. Dupont"),
            audit_record=_audit(document),
        )

        assert output.page_count == 2
        with fitz.open(stream=output.data, filetype="pdf") as doc:
            assert doc.page_count == 2
            audit_text = doc[-1].get_text()
            assert "A. Dupont" in doc[0].get_text()

        assert document.fingerprint() in audit_text
        assert "contract.pdf" in audit_text

    def test_text_color(self, mutator, sample_pdf_bytes):
        document = load_document(sample_pdf_bytes)
        spec = PlacementSpec(color=Color.from_hex("#ff0000"))
        output = mutator.mutate(document, spec, TypedText("Red"))

        with fitz.open(stream=output.data, filetype="pdf") as doc:
            span = next(s for s in _spans(doc[0]) if s["text"] == "Red")

        assert span["color"] == 0xFF0000

    def test_date_stamp_flush_right(self, mutator, sample_pdf_bytes):
        """Date line shares the baseline and ends one margin from the right edge."""
        document = load_document(sample_pdf_bytes)
        output = mutator.mutate(
            document,
            PlacementSpec(x=50, y=65, size=12),
            TypedText("A. Dupont"),
            date_stamp=True,
        )

        with fitz.open(stream=output.data, filetype="pdf") as doc:
            span = next(s for s in _spans(doc[0]) if s["text"].startswith("Date: "))

        assert span["text"] == date_stamp_text()
        assert span["origin"][1] == pytest.approx(842 - 65, abs=0.5)
        assert span["bbox"][2] == pytest.approx(595 - 50, abs=1.5)

    def test_metadata(self, mutator, sample_pdf_bytes):
        document = load_document(sample_pdf_bytes)
        output = mutator.mutate(document, PlacementSpec(), TypedText("A. Dupont"))

        with fitz.open(stream=output.data, filetype="pdf") as doc:
            assert doc.metadata["producer"] == "Signylite"
            assert document.fingerprint() in doc.metadata["keywords"]


class TestPageResolution:
    """Target page selection."""

    def test_out_of_range_page_targets_last(self, three_page_pdf_bytes):
        """Page 99 of 3 marks page 3, with no error."""
        document = load_document(three_page_pdf_bytes)
        output = DocumentMutator().mutate(document, PlacementSpec(page=99), TypedText("A. Dupont"))

        assert output.placement.page_index == 2
        assert output.placement.clamped is True
        with fitz.open(stream=output.data, filetype="pdf") as doc:
            assert "A. Dupont" in doc[2].get_text()
            assert "A. Dupont" not in doc[0].get_text()

    def test_strict_mode_rejects(self, three_page_pdf_bytes):
        document = load_document(three_page_pdf_bytes)
        with pytest.raises(PlacementOutOfRangeError):
            DocumentMutator(strict=True).mutate(document, PlacementSpec(page=99), TypedText("A. Dupont"))


class TestRasterOnPdf:
    """Raster marks embedded into PDFs."""

    def test_image_embedded(self, sample_pdf_bytes, signature_png_bytes):
        document = load_document(sample_pdf_bytes)
        mark = RasterImage.from_bytes(signature_png_bytes)
        output = DocumentMutator().mutate(document, PlacementSpec(x=100, y=100, size=36), mark)

        with fitz.open(stream=output.data, filetype="pdf") as doc:
            infos = doc[0].get_image_info()

        assert len(infos) == 1
        x0, y0, x1, y1 = infos[0]["bbox"]
        assert x0 == pytest.approx(100, abs=0.5)
        assert y1 == pytest.approx(842 - 100, abs=0.5)  # lower edge at y=100 from the bottom
        assert x1 - x0 == pytest.approx(120, abs=0.5)


class TestRotatedPages:
    """Pages carrying /Rotate are addressed as the reader sees them."""

    @pytest.mark.parametrize("rotation", [0, 90, 180, 270])
    def test_text_upright_at_visible_point(self, pdf_factory, rotation):
        """(50, 65) is measured from the visible bottom-left corner."""
        document = load_document(pdf_factory(1, rotation=rotation, label=False))
        page = document.pages[0]
        visible_height = 842 if rotation in (0, 180) else 595
        assert page.height == pytest.approx(visible_height)

        output = DocumentMutator().mutate(
            document, PlacementSpec(x=50, y=65, size=18), TypedText("SIGNED")
        )

        with fitz.open(stream=output.data, filetype="pdf") as doc:
            assert doc[0].rotation == rotation
            left, top, right, bottom = _ink_bbox(doc[0])

        assert left == pytest.approx(50, abs=4)
        assert bottom == pytest.approx(visible_height - 65, abs=2)
        # Upright: a horizontal run is wider than it is tall
        assert right - left > 3 * (bottom - top)

    @pytest.mark.parametrize("rotation", [90, 270])
    def test_raster_upright_at_visible_point(self, pdf_factory, signature_png_bytes, rotation):
        document = load_document(pdf_factory(1, rotation=rotation, label=False))
        mark = RasterImage.from_bytes(signature_png_bytes)

        output = DocumentMutator().mutate(document, PlacementSpec(x=100, y=100, size=36), mark)

        with fitz.open(stream=output.data, filetype="pdf") as doc:
            left, top, right, bottom = _ink_bbox(doc[0])

        # 120x40 mark with its lower-left corner at (100, 100) of a 842x595 view
        assert left >= 98 and right <= 222
        assert top >= 595 - 140 - 2 and bottom <= 595 - 100 + 2
        assert right - left > bottom - top

    def test_watermark_matches_unrotated_page(self, pdf_factory):
        """A rotated portrait page shows the same tiles as a landscape page."""
        mark = TiledPattern("CONFIDENTIAL", opacity=0.4, size=36)
        rendered = []
        for data in (
            pdf_factory(1, width=842, height=595, label=False),
            pdf_factory(1, rotation=90, label=False),
        ):
            output = DocumentMutator().mutate(load_document(data), PlacementSpec(), mark)
            with fitz.open(stream=output.data, filetype="pdf") as doc:
                pix = doc[0].get_pixmap()
                rendered.append(Image.frombytes("RGB", (pix.width, pix.height), pix.samples).convert("L"))

        landscape, rotated = rendered
        assert landscape.size == rotated.size == (842, 595)
        assert min(landscape.getdata()) < 250
        diff = [abs(a - b) for a, b in zip(landscape.getdata(), rotated.getdata())]
        assert sum(diff) / len(diff) < 2


class TestImageTargets:
    """Marks composited onto raster documents."""

    def test_watermark_scenario(self, sample_png_bytes):
        """Tiled watermark on an image keeps its size and darkens the surface."""
        document = load_document(sample_png_bytes, "scan.png")
        mark = TiledPattern("CONFIDENTIAL", opacity=0.12, size=48)
        output = DocumentMutator().mutate(document, PlacementSpec(color=Color(0.0, 0.0, 0.0)), mark)

        assert output.kind == DocumentKind.IMAGE
        assert output.media_type == "image/png"
        assert output.filename == "watermarked.png"
        with Image.open(io.BytesIO(output.data)) as image:
            assert image.size == (400, 300)
            gray = image.convert("L")
            darkest = min(gray.getdata())

        # 12% black over white, never fully opaque
        assert 200 <= darkest < 255

    def test_text_on_image_top_left_origin(self, sample_png_bytes):
        """y is measured from the top for raster targets."""
        document = load_document(sample_png_bytes)
        spec = PlacementSpec(x=20, y=60, size=32, color=Color(0.0, 0.0, 0.0))
        output = DocumentMutator().mutate(document, spec, TypedText("Signed"))

        with Image.open(io.BytesIO(output.data)) as image:
            gray = image.convert("L")
            above_baseline = min(gray.crop((20, 25, 200, 60)).getdata())
            far_below = min(gray.crop((0, 150, 400, 300)).getdata())

        assert above_baseline < 128
        assert far_below == 255

    def test_audit_in_png_text_chunks(self, sample_png_bytes):
        document = load_document(sample_png_bytes, "scan.png")
        output = DocumentMutator().mutate(
            document, PlacementSpec(), TypedText("Signed"), audit_record=_audit(document)
        )

        assert output.page_count == 1
        with Image.open(io.BytesIO(output.data)) as image:
            assert image.text["Signylite-Fingerprint"] == f"SHA-256:{document.fingerprint()}"

    def test_raster_mark_on_image(self, sample_png_bytes, signature_png_bytes):
        document = load_document(sample_png_bytes, "scan.png")
        mark = RasterImage.from_bytes(signature_png_bytes)
        output = DocumentMutator().mutate(document, PlacementSpec(x=10, y=10, size=36), mark)

        assert output.filename == "scan_signed.png"
        with Image.open(io.BytesIO(output.data)) as image:
            # Scribble starts near (5, 30) of the mark
            assert min(image.convert("L").crop((10, 10, 130, 50)).getdata()) < 128


class TestOutputDocument:
    """Delivery metadata and failures."""

    def test_round_trip_reloads(self, three_page_pdf_bytes):
        document = load_document(three_page_pdf_bytes, "contract.pdf")
        output = DocumentMutator().mutate(document, PlacementSpec(), TypedText("A. Dupont"))
        reloaded = load_document(output.data, output.filename)

        assert reloaded.page_count == 3
        assert output.fingerprint == document.fingerprint()
        assert reloaded.fingerprint() != document.fingerprint()

    def test_source_untouched(self, sample_pdf_bytes):
        document = load_document(sample_pdf_bytes)
        DocumentMutator().mutate(document, PlacementSpec(), TypedText("A. Dupont"))
        assert document.data == sample_pdf_bytes

    def test_empty_mark_rejected(self, sample_pdf_bytes):
        document = load_document(sample_pdf_bytes)
        with pytest.raises(MissingInputError):
            DocumentMutator().mutate(document, PlacementSpec(), TypedText("  "))

    def test_serialize_failure(self, sample_png_bytes, monkeypatch):
        """Encoder errors surface as SerializeError."""
        document = load_document(sample_png_bytes)

        def broken_save(self, *args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(Image.Image, "save", broken_save)
        with pytest.raises(SerializeError):
            DocumentMutator().mutate(document, PlacementSpec(), TypedText("Signed"))


class TestSuggestedFilename:
    """Download names."""

    def test_pdf(self, sample_pdf_bytes):
        document = load_document(sample_pdf_bytes, "My Contract v2.pdf")
        assert suggested_filename(document, TypedText("x")) == "My_Contract_v2_signed.pdf"

    def test_pdf_watermark(self, sample_pdf_bytes):
        document = load_document(sample_pdf_bytes, "report.pdf")
        assert suggested_filename(document, TiledPattern("x")) == "report_signed.pdf"

    def test_image_watermark(self, sample_png_bytes):
        document = load_document(sample_png_bytes, "scan.jpg")
        assert suggested_filename(document, TiledPattern("x")) == "watermarked.png"

    def test_image_signature(self, sample_png_bytes):
        document = load_document(sample_png_bytes, "scan 01.jpg")
        assert suggested_filename(document, TypedText("x")) == "scan_01_signed.png"
