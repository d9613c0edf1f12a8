"""Parser for the ``pdfimages -list`` report.

The report is positional. The first two lines are a header and a dashed
rule; every following non-blank line describes one image instance::

    page   num  type   width height color comp bpc  enc interp  object ID x-ppi y-ppi size ratio
    --------------------------------------------------------------------------------------------
       1     0 image    2480  3508  gray    1   8  jpeg   no         9  0   300   300  345K 4.0%

The ``object ID`` header spans two data tokens (object number and
generation number), so the data columns are indexed as below. Any drift in
the tool's output shows up in the parser tests rather than as a silent
misclassification.
"""

from __future__ import annotations

import structlog

from pdfconform.models import ImageDescriptor

log = structlog.get_logger(__name__)

HEADER_LINES = 2

COL_PAGE = 0
COL_NUM = 1
COL_TYPE = 2
COL_WIDTH = 3
COL_HEIGHT = 4
COL_COLOR = 5
COL_COMPONENTS = 6
COL_BPC = 7
COL_ENCODING = 8
COL_INTERPOLATE = 9
COL_OBJECT = 10
COL_GENERATION = 11
COL_X_PPI = 12
COL_Y_PPI = 13
COL_SIZE = 14
COL_RATIO = 15

# A row must reach the y-ppi column to be usable.
MIN_COLUMNS = COL_Y_PPI + 1


def _to_int(token: str) -> int:
    try:
        return int(token)
    except ValueError:
        return 0


def parse_row(line: str) -> ImageDescriptor | None:
    """Parse one data line, or return ``None`` when it is too short."""
    parts = line.split()
    if len(parts) < MIN_COLUMNS:
        return None

    return ImageDescriptor(
        page=_to_int(parts[COL_PAGE]),
        index=_to_int(parts[COL_NUM]),
        image_type=parts[COL_TYPE],
        width=_to_int(parts[COL_WIDTH]),
        height=_to_int(parts[COL_HEIGHT]),
        color_space=parts[COL_COLOR].lower(),
        components=_to_int(parts[COL_COMPONENTS]),
        bits_per_component=_to_int(parts[COL_BPC]),
        encoding=parts[COL_ENCODING],
        object_id=f"{parts[COL_OBJECT]} {parts[COL_GENERATION]}",
        horizontal_dpi=_to_int(parts[COL_X_PPI]),
        vertical_dpi=_to_int(parts[COL_Y_PPI]),
        encoded_size=parts[COL_SIZE] if len(parts) > COL_SIZE else "",
    )


def parse_image_list(output: str) -> list[ImageDescriptor]:
    """Return one descriptor per image row of a ``pdfimages -list`` report."""
    images: list[ImageDescriptor] = []
    for line in output.splitlines()[HEADER_LINES:]:
        if not line.strip():
            continue
        descriptor = parse_row(line)
        if descriptor is None:
            log.warning("pdfimages_row_skipped", line=line.strip())
            continue
        images.append(descriptor)
    return images
