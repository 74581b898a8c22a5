"""
XML extractor - streaming structure scan.

Uses iterparse so elements are discarded as soon as they close. Depth
is tracked with a counter on start/end events; elements beyond the
depth budget are counted but not described.
"""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List

from ..errors import ExtractionError
from ..models import FileCategory
from ..summaries import XmlSummary
from .base import BaseExtractor


logger = logging.getLogger(__name__)


def local_name(tag: str) -> str:
    """'{urn:x}item' -> 'item'"""
    return tag.rsplit("}", 1)[-1] if tag.startswith("{") else tag


class XmlExtractor(BaseExtractor):
    """Summarizes XML documents: root, namespaces, element counts, text excerpt."""

    @property
    def name(self) -> str:
        return "xml"

    def extract_summary(self, path: Path, category: FileCategory) -> XmlSummary:
        summary = XmlSummary()
        content: List[str] = []
        content_len = 0
        depth = 0

        try:
            for event, item in ET.iterparse(str(path), events=("start", "end", "start-ns")):
                if event == "start-ns":
                    _prefix, uri = item
                    if uri not in summary.namespaces:
                        summary.namespaces.append(uri)
                    continue

                if event == "start":
                    depth += 1
                    summary.element_count += 1
                    if not summary.root:
                        summary.root = local_name(item.tag)
                    if depth > self.config.xml_max_depth:
                        summary.truncated = True
                    else:
                        summary.depth = max(summary.depth, depth)
                    continue

                depth -= 1
                text = item.text.strip() if item.text else ""
                if text and content_len < self.config.text_max_bytes:
                    content.append(text)
                    content_len += len(text) + 1
                elif text:
                    summary.truncated = True
                item.clear()
        except ET.ParseError as e:
            # Keep whatever was recovered before the syntax error
            logger.debug(f"XML parse failed for {path}: {e}")
            summary.error = f"xml: {e}"

        summary.content = " ".join(content)[: self.config.text_max_bytes]
        summary.excerpt = summary.content[: self.config.preview_chars]
        return summary

    def extract_deep(self, path: Path) -> str:
        """The full document, re-serialized with indentation."""
        try:
            tree = ET.parse(str(path))
        except (OSError, ET.ParseError) as e:
            raise ExtractionError(path, f"xml: {e}") from e
        ET.indent(tree)
        return ET.tostring(tree.getroot(), encoding="unicode")
