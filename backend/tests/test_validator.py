from conftest import PNG_1X1, image_bytes

from rib.services.validator import is_allowed, sniff_mime


def test_sniffs_png():
    assert sniff_mime(PNG_1X1) == "image/png"


def test_sniffs_jpeg():
    assert sniff_mime(image_bytes("JPEG")) == "image/jpeg"


def test_sniffs_gif():
    assert sniff_mime(image_bytes("GIF")) == "image/gif"


def test_sniffs_pdf():
    data = b"%PDF-1.4\n1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
    assert sniff_mime(data) == "application/pdf"


def test_head_is_enough():
    data = image_bytes("PNG", size=(512, 512))
    assert sniff_mime(data[:64]) == "image/png"


def test_allow_list():
    assert is_allowed("image/png")
    assert is_allowed("video/webm")
    assert not is_allowed("text/x-shellscript")
    assert not is_allowed("image/svg+xml")
    assert not is_allowed("application/octet-stream")


def test_rejects_script():
    mime = sniff_mime(b"#!/bin/bash\nrm -rf /\n")
    assert not is_allowed(mime)


def test_custom_table():
    assert is_allowed("text/plain", {"text/plain": ".txt"})
    assert not is_allowed("image/png", {"text/plain": ".txt"})
