"""
Pallet label rendering.

One page per pallet, 100 mm x 150 mm portrait, drawn with Pillow at the
203 DPI of the thermal printers on the loading dock and saved as a single
multi-page PDF. Layout from top to bottom:

    +--------------------------+
    |         BEFR0124         |  project bar (25 mm)
    +--------------------------+
    |   Tür Vorne Rechts, BL07 |  drawing bar (25 mm)
    +--------------------------+
    | Palette                  |
    |           2/5            |  pallet bar (22 mm)
    +--------------------------+
    |        [ QR 50mm ]       |  signed /scan URL
    |                          |
    | Erstellt: ... · mm  LOGO |  footer
    +--------------------------+
"""

import io
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from PIL import Image, ImageDraw, ImageFont

from completion_store import format_completed_at
from exceptions import ValidationError
from logger import get_logger, set_label_context
from normalizer import normalize_drawing, normalize_project
from qr_codes import make_qr_image

logger = get_logger(__name__)

# === LABEL DIMENSIONS ===
DPI = 203
PAGE_WIDTH_MM = 100
PAGE_HEIGHT_MM = 150

OUTER_MARGIN_MM = 2
PROJECT_BAR_MM = 25
DRAWING_BAR_MM = 25
PALLET_BAR_MM = 22
QR_SIZE_MM = 50
QR_GAP_MM = 4
LOGO_MAX_MM = (18, 10)

MAX_PALLETS = 50

BOLD_FONTS = ("arialbd.ttf", "DejaVuSans-Bold.ttf", "LiberationSans-Bold.ttf")
REGULAR_FONTS = ("arial.ttf", "DejaVuSans.ttf", "LiberationSans-Regular.ttf")


def mm_to_px(value_mm: float) -> int:
    """Millimetres to printer pixels: (mm / 25.4) * DPI."""
    return int(round(value_mm / 25.4 * DPI))


def pt_to_px(value_pt: float) -> int:
    return int(round(value_pt / 72 * DPI))


@lru_cache(maxsize=128)
def _load_font(size_pt: int, bold: bool = True) -> ImageFont.ImageFont:
    size_px = pt_to_px(size_pt)
    for name in (BOLD_FONTS if bold else REGULAR_FONTS):
        try:
            return ImageFont.truetype(name, size_px)
        except OSError:
            continue
    # Pillow's bundled font scales since 10.1
    return ImageFont.load_default(size=size_px)


def format_created(moment: datetime, time_zone: str = "Europe/Berlin") -> str:
    """German short date + medium time, e.g. "05.11.25, 14:30:45"."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(ZoneInfo(time_zone))
    return local.strftime("%d.%m.%y, %H:%M:%S")


class LabelRenderer:
    """
    Draws pallet label pages.

    Args:
        logo_path: Optional logo printed bottom right; a missing or broken
                   file is logged and skipped
        time_zone: Zone used for the "Erstellt" footer
    """

    def __init__(self, logo_path: Optional[Path] = None, time_zone: str = "Europe/Berlin"):
        self.logo_path = Path(logo_path) if logo_path else None
        self.time_zone = time_zone
        self.page_size = (mm_to_px(PAGE_WIDTH_MM), mm_to_px(PAGE_HEIGHT_MM))
        self._logo: Optional[Image.Image] = None
        self._logo_loaded = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fit_font(self, draw: ImageDraw.ImageDraw, text: str, max_pt: int, min_pt: int,
                  box_w: int, box_h: int) -> ImageFont.ImageFont:
        """Largest bold font (max_pt down to min_pt) rendering ``text`` on one line inside the box."""
        for size in range(max_pt, min_pt - 1, -1):
            font = _load_font(size)
            left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
            if right - left <= box_w and bottom - top <= box_h:
                return font
        return _load_font(min_pt)

    def _draw_centered(self, draw: ImageDraw.ImageDraw, text: str, font: ImageFont.ImageFont,
                       box: Tuple[int, int, int, int]) -> None:
        x0, y0, x1, y1 = box
        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        x = x0 + (x1 - x0 - (right - left)) / 2 - left
        y = y0 + (y1 - y0 - (bottom - top)) / 2 - top
        draw.text((x, y), text, font=font, fill="black")

    def _get_logo(self) -> Optional[Image.Image]:
        if self._logo_loaded:
            return self._logo
        self._logo_loaded = True

        if not self.logo_path:
            return None
        try:
            logo = Image.open(self.logo_path).convert("RGBA")
            logo.thumbnail((mm_to_px(LOGO_MAX_MM[0]), mm_to_px(LOGO_MAX_MM[1])), Image.LANCZOS)
            self._logo = logo
        except (OSError, ValueError) as e:
            logger.warning(f"Logo could not be loaded from {self.logo_path}: {e}")
        return self._logo

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_page(self, project: str, drawing: str, index: int, count: int,
                    scan_url: str, created: str, packer: str = "") -> Image.Image:
        """Render the label for pallet ``index`` of ``count``."""
        width, height = self.page_size
        page = Image.new("RGB", (width, height), "white")
        draw = ImageDraw.Draw(page)

        margin = mm_to_px(OUTER_MARGIN_MM)
        pad = mm_to_px(2)
        x0, x1 = margin, width - margin
        inner_w = x1 - x0 - 2 * pad

        # Outer frame
        draw.rectangle((x0, margin, x1, height - margin), outline="black", width=2)

        # === Project bar ===
        project_y = margin
        drawing_y = project_y + mm_to_px(PROJECT_BAR_MM)
        pallet_y = drawing_y + mm_to_px(DRAWING_BAR_MM)
        pallet_end = pallet_y + mm_to_px(PALLET_BAR_MM)

        draw.rectangle((x0, project_y, x1, drawing_y), outline="black", width=3)
        font = self._fit_font(draw, project, 66, 14, inner_w, drawing_y - project_y - 2 * pad)
        self._draw_centered(draw, project, font, (x0, project_y, x1, drawing_y))

        # === Drawing bar ===
        draw.rectangle((x0, drawing_y, x1, pallet_y), outline="black", width=3)
        font = self._fit_font(draw, drawing, 66, 14, inner_w, pallet_y - drawing_y - 2 * pad)
        self._draw_centered(draw, drawing, font, (x0, drawing_y, x1, pallet_y))

        # === Pallet bar: small "Palette", large fraction ===
        draw.rectangle((x0, pallet_y, x1, pallet_end), outline="black", width=3)
        draw.text((x0 + mm_to_px(4), pallet_y + mm_to_px(3)), "Palette",
                  font=_load_font(10), fill="black")
        fraction = f"{index}/{count}"
        font = self._fit_font(draw, fraction, 66, 18, inner_w, pallet_end - pallet_y - mm_to_px(6))
        self._draw_centered(draw, fraction, font,
                            (x0, pallet_y + mm_to_px(4), x1, pallet_end))

        # === QR code ===
        qr_size = mm_to_px(QR_SIZE_MM)
        qr_x = (width - qr_size) // 2
        qr_y = pallet_end + mm_to_px(QR_GAP_MM)
        page.paste(make_qr_image(scan_url, size_px=qr_size), (qr_x, qr_y))
        draw.rectangle((qr_x, qr_y, qr_x + qr_size, qr_y + qr_size), outline="black", width=1)

        # === Footer ===
        footer_y = qr_y + qr_size + mm_to_px(QR_GAP_MM)
        footer = f"Erstellt: {created} · {packer}" if packer else f"Erstellt: {created}"
        draw.text((x0 + pad, footer_y), footer, font=_load_font(9, bold=False), fill="black")

        logo = self._get_logo()
        if logo is not None:
            logo_x = x1 - pad - logo.width
            page.paste(logo, (logo_x, footer_y - mm_to_px(2)), logo)

        return page

    @staticmethod
    def to_pdf(pages: List[Image.Image]) -> bytes:
        """Save pages as one PDF at printer resolution."""
        if not pages:
            raise ValueError("No pages to save")
        buffer = io.BytesIO()
        pages[0].save(buffer, format="PDF", resolution=DPI, save_all=True,
                      append_images=pages[1:])
        return buffer.getvalue()


def parse_pallet_count(raw: Union[str, int, None], max_pallets: int = MAX_PALLETS) -> int:
    """Parse the form's pallet count and clamp it to 1..max_pallets."""
    if isinstance(raw, int):
        count = raw
    else:
        try:
            count = int(str(raw or "").strip())
        except ValueError:
            raise ValidationError("Bitte Anzahl Paletten als Zahl angeben.", field="count")
    return max(1, min(max_pallets, count))


def label_filename(project: str, drawing: str, created_at: datetime) -> str:
    stamp = format_completed_at(created_at).replace(":", "-").replace(".", "-")
    return f"Labels_{project}_{drawing}_{stamp}.pdf"


def create_pallet_labels(gateway, verifier, renderer: LabelRenderer, base_url: str,
                         project: str, drawing: str, count: Union[str, int, None],
                         packer: str = "", now: Optional[datetime] = None,
                         max_pallets: int = MAX_PALLETS) -> Tuple[str, bytes]:
    """
    Create one Todoist task per pallet and render their labels.

    Args:
        gateway: TaskGateway used to create the tasks
        verifier: SignatureVerifier signing each task id for its QR code
        renderer: LabelRenderer drawing the pages
        base_url: Public server URL printed into the QR codes
        project, drawing: Raw form input, normalized here
        count: Raw pallet count, clamped to 1..max_pallets
        packer: Optional initials printed in the footer

    Returns:
        (filename, pdf_bytes)

    Raises:
        ValidationError: Missing project/drawing or non-numeric count
        RemoteServiceError: A task could not be created
    """
    project_code = normalize_project(project)
    drawing_text = normalize_drawing(drawing)
    if not project_code:
        raise ValidationError("Bitte Projekt angeben.", field="project")
    if not drawing_text:
        raise ValidationError("Bitte Zeichnungsnummer angeben.", field="drawing")
    pallets = parse_pallet_count(count, max_pallets)
    packer = (packer or "").strip()[:8]

    set_label_context(project_code)
    created_at = now or datetime.now(timezone.utc)
    created = format_created(created_at, renderer.time_zone)
    base = base_url.rstrip("/")

    # Make sure the commission label exists before tasks reference it
    gateway.ensure_label(project_code)

    logger.info(f"Creating {pallets} pallet label(s) for {project_code} / {drawing_text}")
    pages = []
    for index in range(1, pallets + 1):
        title = f"{project_code} – {drawing_text} – Palette {index}/{pallets}"
        task = gateway.create_task(title, labels=[project_code])
        scan_url = f"{base}{verifier.signed_path(task.id)}"
        pages.append(renderer.render_page(project_code, drawing_text, index, pallets,
                                          scan_url, created, packer))

    return label_filename(project_code, drawing_text, created_at), renderer.to_pdf(pages)
