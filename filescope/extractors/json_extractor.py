"""
JSON extractor - bounded path enumeration.

Walks the parsed document with an explicit stack instead of recursion,
so deeply nested input cannot exhaust the interpreter stack. Only the
first few elements of each array are descended into.
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Tuple

from ..errors import ExtractionError
from ..models import FileCategory
from ..summaries import JsonPath, JsonSummary
from .base import BaseExtractor


logger = logging.getLogger(__name__)


def json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _child_path(parent: str, key: str) -> str:
    if key.isidentifier():
        return f"{parent}.{key}"
    return f"{parent}[{json.dumps(key)}]"


class JsonExtractor(BaseExtractor):
    """Enumerates key paths, value types and samples of JSON files."""

    @property
    def name(self) -> str:
        return "json"

    def extract_summary(self, path: Path, category: FileCategory) -> JsonSummary:
        limit = self.config.json_max_bytes
        with open(path, "rb") as f:
            raw = f.read(limit + 1)

        text = raw[:limit].decode("utf-8", errors="replace")
        summary = JsonSummary(
            excerpt=text[: self.config.preview_chars],
            content=text[: self.config.text_max_bytes],
        )

        if len(raw) > limit:
            # Too large to parse: searchable prefix only, no key paths
            logger.debug(f"{path} exceeds json_max_bytes ({limit}), structure not parsed")
            summary.truncated = True
            return summary

        try:
            document = json.loads(text)
        except (ValueError, RecursionError) as e:
            logger.debug(f"JSON parse failed for {path}: {e}")
            summary.error = f"json: {e}"
            return summary

        self._walk(document, summary)
        return summary

    def extract_deep(self, path: Path) -> str:
        """The whole document, re-serialized with indentation."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
            return json.dumps(document, indent=2, ensure_ascii=False)
        except (OSError, ValueError, RecursionError) as e:
            raise ExtractionError(path, f"json: {e}") from e

    def _walk(self, document: Any, summary: JsonSummary) -> None:
        max_depth = self.config.json_max_depth
        max_paths = self.config.json_max_paths
        array_sample = self.config.json_array_sample

        paths: List[JsonPath] = []
        stack: List[Tuple[str, Any, int]] = [("$", document, 0)]

        while stack:
            current, value, depth = stack.pop()
            kind = json_type(value)
            summary.depth = max(summary.depth, depth)

            if kind == "object":
                summary.object_count += 1
            elif kind == "array":
                summary.array_count += 1

            if current != "$":
                if len(paths) >= max_paths:
                    summary.truncated = True
                    break
                paths.append(JsonPath(path=current, value_type=kind, sample=self._sample(value)))

            if depth >= max_depth:
                if kind in ("object", "array") and value:
                    summary.truncated = True
                continue

            children: List[Tuple[str, Any, int]] = []
            if kind == "object":
                children = [(_child_path(current, str(k)), v, depth + 1) for k, v in value.items()]
            elif kind == "array":
                children = [
                    (f"{current}[{i}]", v, depth + 1)
                    for i, v in enumerate(value[:array_sample])
                ]
            # Reversed so paths come out in document order
            stack.extend(reversed(children))

        summary.paths = paths

    def _sample(self, value: Any) -> str | None:
        if isinstance(value, (dict, list)):
            return None
        text = value if isinstance(value, str) else json.dumps(value)
        return text[: self.config.sample_chars]
