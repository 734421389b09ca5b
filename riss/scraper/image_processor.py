from __future__ import annotations

import base64
from io import BytesIO
from typing import Iterable, Union

from PIL import Image

TIFF_DPI = (300, 300)
THRESHOLD = 128

PageData = Union[bytes, str]


def _page_bytes(page: PageData) -> bytes:
    if isinstance(page, str):
        return base64.b64decode(page)
    return page


def to_bilevel(data: bytes) -> Image.Image:
    """Decode one captured page and reduce it to 1-bit black and white."""

    with Image.open(BytesIO(data)) as source:
        gray = source.convert("L")
    return gray.point(lambda p: 255 if p >= THRESHOLD else 0, mode="1")


def create_multipage_tiff(pages: Iterable[PageData]) -> bytes:
    """Compose captured pages into one Group 4 compressed, 300 dpi TIFF."""

    frames = [to_bilevel(_page_bytes(p)) for p in pages if p]
    if not frames:
        raise ValueError("No pages to compose")

    out = BytesIO()
    first, rest = frames[0], frames[1:]
    first.save(
        out,
        format="TIFF",
        save_all=True,
        append_images=rest,
        compression="group4",
        dpi=TIFF_DPI,
    )
    return out.getvalue()


__all__ = ["create_multipage_tiff", "to_bilevel"]
