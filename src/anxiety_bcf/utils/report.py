"""
PDF analysis report assembled from figures, tables and text sections.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from fpdf import FPDF
from fpdf.enums import XPos, YPos


logger = logging.getLogger(__name__)


def _latin1(text) -> str:
    """Core PDF fonts only cover latin-1; other characters are replaced."""
    return str(text).encode('latin-1', 'replace').decode('latin-1')


def _format_cell(value, float_format: str) -> str:
    if isinstance(value, (float, np.floating)):
        return "" if np.isnan(value) else float_format.format(value)
    return _latin1(value)


class ReportBuilder(FPDF):
    """Analysis report written as a PDF with numbered sections."""

    def __init__(self, title: str):
        super().__init__()
        self.set_title(_latin1(title))
        self.set_author("anxiety-bcf")
        self.set_auto_page_break(auto=True, margin=15)
        self.generated = datetime.now().strftime("%Y-%m-%d %H:%M")
        self.n_sections = 0

    def header(self):
        """Define header."""
        self.set_font("helvetica", "B", 12)
        width = min(self.get_string_width(self.title) + 6, self.epw)
        self.set_x((self.w - width) / 2)
        self.set_draw_color(46, 134, 171)
        self.set_fill_color(214, 234, 243)
        self.set_text_color(0)
        self.set_line_width(0.5)
        self.cell(width, 9, self.title, border=1, new_x=XPos.LMARGIN, new_y=YPos.NEXT,
                  align="C", fill=True)
        self.ln(6)

    def footer(self):
        """Define footer."""
        self.set_y(-15)
        self.set_font("helvetica", "I", 8)
        self.set_text_color(128)
        self.cell(0, 10, f"Page {self.page_no()} - generated {self.generated}", align="C")

    def section_title(self, label: str) -> None:
        self.set_font("helvetica", "", 14)
        self.set_fill_color(200)
        self.cell(0, 7, f"Section {self.n_sections}: {_latin1(label)}",
                  new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="L", fill=True)
        self.ln(3)

    def section_body(self, text: str) -> None:
        self.set_font("helvetica", size=11)
        for paragraph in text.strip().split("\n\n"):
            self.multi_cell(0, h=5, text=_latin1(paragraph.strip()), align="L",
                            new_x=XPos.LMARGIN, new_y=YPos.NEXT)
            self.ln(2)

    def add_section(self, heading: str, text: Optional[str] = None) -> None:
        """Start a numbered section on a new page."""
        self.n_sections += 1
        self.add_page()
        self.section_title(heading)
        if text:
            self.section_body(text)

    def add_figure(self, path: Union[str, Path], caption: Optional[str] = None,
                   width: float = 170) -> None:
        """Place a PNG figure at full text width; missing files are logged and skipped."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Figure {path} not found; leaving it out of the report")
            return

        if caption:
            self.set_font("helvetica", "I", size=10)
            self.multi_cell(0, 5, _latin1(caption), align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.image(str(path), x=(self.w - width) / 2, w=width)
        self.ln(4)

    def add_figure_row(self, paths: Sequence[Union[str, Path]], caption: Optional[str] = None,
                       height: float = 60) -> None:
        """Place figures side by side, two per row."""
        paths = [Path(p) for p in paths if Path(p).exists()]
        if not paths:
            return

        if caption:
            self.set_font("helvetica", "I", size=10)
            self.multi_cell(0, 5, _latin1(caption), align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

        width = (self.epw - 10) / 2
        for i in range(0, len(paths), 2):
            if self.get_y() + height > self.page_break_trigger:
                self.add_page()
            y = self.get_y()
            self.image(str(paths[i]), x=self.l_margin, y=y, w=width, h=height, keep_aspect_ratio=True)
            if i + 1 < len(paths):
                self.image(str(paths[i + 1]), x=self.l_margin + width + 10, y=y, w=width, h=height,
                           keep_aspect_ratio=True)
            self.set_y(y + height + 2)
        self.ln(2)

    def add_table(self, df: pd.DataFrame, caption: Optional[str] = None,
                  float_format: str = "{:.3f}", font_size: int = 9) -> None:
        """Render a DataFrame as a bordered table; columns shrink to fit the page."""
        row_height = 6
        if caption:
            self.set_font("helvetica", "I", size=10)
            self.multi_cell(0, 5, _latin1(caption), align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

        columns: List[str] = [_latin1(col) for col in df.columns]
        rows = [[_format_cell(value, float_format) for value in row]
                for row in df.itertuples(index=False)]

        self.set_font("helvetica", size=font_size)
        widths = [max([self.get_string_width(col)] + [self.get_string_width(row[j]) for row in rows]) + 4
                  for j, col in enumerate(columns)]
        if sum(widths) > self.epw:
            widths = [w * self.epw / sum(widths) for w in widths]

        self.set_font("helvetica", "B", size=font_size)
        for col, width in zip(columns, widths):
            self.cell(width, row_height, col, border=1, align="C")
        self.ln(row_height)

        self.set_font("helvetica", size=font_size)
        for row in rows:
            for j, (value, width) in enumerate(zip(row, widths)):
                self.cell(width, row_height, value, border=1, align="L" if j == 0 else "R")
            self.ln(row_height)
        self.ln(4)

    def add_preformatted(self, text: str, font_size: int = 8) -> None:
        self.set_font("courier", size=font_size)
        self.multi_cell(0, 4, _latin1(text.strip("\n")), align="L", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(4)

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.output(str(path))
        logger.info(f"Report written to {path}")
        return path
