import io
import re
from typing import List, Tuple

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches, Pt

FONT_NAME = "Calibri"

_BOLD = re.compile(r"\*\*(.+?)\*\*")
_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_HEADING = re.compile(r"^(#{1,6})\s+(.*)$")
_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.*)$")


def _split_bold_segments(text: str) -> List[Tuple[str, bool]]:
    """Split on **bold** spans into (segment, bold) pairs; unmatched ** stay literal."""
    parts = []
    pos = 0
    for m in _BOLD.finditer(text):
        if m.start() > pos:
            parts.append((text[pos:m.start()], False))
        parts.append((m.group(1), True))
        pos = m.end()
    if pos < len(text):
        parts.append((text[pos:], False))
    return [(seg, b) for seg, b in parts if seg]


def _add_runs(paragraph, text: str, *, font_size: int = 11, bold: bool = False):
    for seg_text, seg_bold in _split_bold_segments(text):
        run = paragraph.add_run(seg_text)
        run.font.name = FONT_NAME
        run.font.size = Pt(font_size)
        run.bold = bool(seg_bold or bold)


def _spacing(paragraph, before=0, after=0):
    fmt = paragraph.paragraph_format
    fmt.space_before = Pt(before)
    fmt.space_after = Pt(after)


def _add_hyperlink(paragraph, text: str, url: str, *, font_size: int = 11):
    """Append a clickable link run styled like the surrounding body text."""
    r_id = paragraph.part.relate_to(url, RT.HYPERLINK, is_external=True)
    link = OxmlElement("w:hyperlink")
    link.set(qn("r:id"), r_id)

    props = OxmlElement("w:rPr")
    style = OxmlElement("w:rStyle")
    style.set(qn("w:val"), "Hyperlink")
    fonts = OxmlElement("w:rFonts")
    for attr in ("w:ascii", "w:hAnsi", "w:cs"):
        fonts.set(qn(attr), FONT_NAME)
    size = OxmlElement("w:sz")
    size.set(qn("w:val"), str(font_size * 2))
    underline = OxmlElement("w:u")
    underline.set(qn("w:val"), "single")
    for child in (style, fonts, size, underline):
        props.append(child)

    run = OxmlElement("w:r")
    run.append(props)
    label = OxmlElement("w:t")
    label.set(qn("xml:space"), "preserve")
    label.text = text
    run.append(label)
    link.append(run)
    paragraph._p.append(link)


def _add_inline(paragraph, text: str, **kwargs):
    # markdown links become real hyperlinks, everything else plain/bold runs
    pos = 0
    for m in _LINK.finditer(text):
        if m.start() > pos:
            _add_runs(paragraph, text[pos:m.start()], **kwargs)
        _add_hyperlink(paragraph, m.group(1), m.group(2), font_size=kwargs.get("font_size", 11))
        pos = m.end()
    if pos < len(text):
        _add_runs(paragraph, text[pos:], **kwargs)


def build_document(title: str, content: str):
    """Lay out generated markdown-ish text as a Word document."""
    doc = Document()
    for sec in doc.sections:
        sec.top_margin = Inches(0.75)
        sec.bottom_margin = Inches(0.75)
        sec.left_margin = Inches(0.8)
        sec.right_margin = Inches(0.8)

    if title:
        p = doc.add_paragraph()
        _spacing(p, after=6)
        p.alignment = WD_ALIGN_PARAGRAPH.CENTER
        _add_runs(p, title, font_size=16, bold=True)

    for raw_line in (content or "").splitlines():
        line = raw_line.rstrip()
        if not line.strip():
            continue
        if line.strip().startswith("```"):
            continue

        heading = _HEADING.match(line.strip())
        if heading:
            level = len(heading.group(1))
            p = doc.add_paragraph()
            _spacing(p, before=6, after=2)
            _add_inline(p, heading.group(2).strip(), font_size=max(11, 15 - level), bold=True)
            continue

        bullet = _BULLET.match(line)
        if bullet:
            p = doc.add_paragraph()
            _spacing(p)
            p.paragraph_format.left_indent = Pt(18)
            r_sym = p.add_run("• ")
            r_sym.font.name = FONT_NAME
            r_sym.font.size = Pt(11)
            _add_inline(p, bullet.group(1).strip())
            continue

        p = doc.add_paragraph()
        _spacing(p, after=4)
        _add_inline(p, line.strip())

    return doc


def render_docx(path: str, title: str, content: str) -> None:
    build_document(title, content).save(path)


def content_to_docx_bytes(title: str, content: str) -> bytes:
    buf = io.BytesIO()
    build_document(title, content).save(buf)
    return buf.getvalue()
