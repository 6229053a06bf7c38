"""Signature scanning of decoded request payloads.

The scanner walks a JSON value tree (``None``, ``bool``, numbers, strings,
lists and dicts) depth first. Object keys are checked against a denylist of
NoSQL operators and prototype-pollution names before their values are
visited; string leaves are tested against ordered pattern families. The first
hit ends the walk.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

CATEGORY_XSS_OR_TRAVERSAL = "xss_or_path_traversal"
CATEGORY_SQL_INJECTION = "sql_injection"
CATEGORY_COMMAND_INJECTION = "command_injection"
CATEGORY_OPERATOR_KEY = "nosql_or_prototype_pollution"

PATTERN_FAMILIES: Final[tuple[tuple[str, tuple[re.Pattern[str], ...]], ...]] = (
    (
        CATEGORY_XSS_OR_TRAVERSAL,
        (
            # Script elements only; plain URLs are not markup.
            re.compile(r"<script\b[^>]*>([\s\S]*?)</script>", re.IGNORECASE),
            re.compile(r"on\w+\s*=\s*['\"]*javascript:", re.IGNORECASE),
            re.compile(r"(\.\./|\.\.\\)"),
        ),
    ),
    (
        CATEGORY_SQL_INJECTION,
        (
            re.compile(r"\bunion\b[\s\S]{0,40}\bselect\b", re.IGNORECASE),
            re.compile(r"\bselect\b[\s\S]{0,40}\bfrom\b", re.IGNORECASE),
            re.compile(
                r"\b(insert|update|delete|drop|truncate|alter)\b[\s\S]{0,40}\b(table|into|set)\b",
                re.IGNORECASE,
            ),
            re.compile(r"\b(or|and)\b\s+['\"]?\d+['\"]?\s*=\s*['\"]?\d+['\"]?", re.IGNORECASE),
            re.compile(r"\b(sleep|benchmark)\s*\(", re.IGNORECASE),
            re.compile(r"--\s*$", re.MULTILINE),
        ),
    ),
    (
        CATEGORY_COMMAND_INJECTION,
        (
            re.compile(
                r"(?:^|[\s;&|`])(?:cat|ls|pwd|bash|sh|cmd|powershell|wget|curl|nc|ncat)\b",
                re.IGNORECASE,
            ),
            re.compile(r"\|\s*(?:bash|sh|powershell|cmd)\b", re.IGNORECASE),
        ),
    ),
)

DENYLISTED_KEYS: Final[frozenset[str]] = frozenset(
    {
        "$where", "$ne", "$gt", "$gte", "$lt", "$lte", "$regex",
        "$or", "$and", "$nor", "$not", "$expr",
        "__proto__", "prototype", "constructor",
    }
)


@dataclass(frozen=True)
class ThreatDetection:
    """First signature hit: its family, the value path and a bounded sample."""

    category: str
    path: str
    sample: str


class ThreatScanner:
    """Stateless payload scanner; equal inputs always give equal outcomes."""

    def __init__(
        self,
        exempt_prefixes: Iterable[str] = (),
        sample_length: int = 220,
    ) -> None:
        self._exempt_prefixes = tuple(exempt_prefixes)
        self._sample_length = sample_length

    def is_exempt(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self._exempt_prefixes)

    def scan(self, payload: Any, root: str = "") -> ThreatDetection | None:
        """Return the first detection in ``payload`` or ``None`` if it is clean."""
        return self._walk(payload, root)

    def scan_request(
        self, body: Any = None, query: Mapping[str, Any] | None = None
    ) -> ThreatDetection | None:
        """Scan the decoded body, then the query parameters."""
        return self.scan(body, "body") or self.scan(query or {}, "query")

    def check_string(self, value: str, path: str) -> ThreatDetection | None:
        for category, patterns in PATTERN_FAMILIES:
            for pattern in patterns:
                if pattern.search(value):
                    return ThreatDetection(category, path, value[: self._sample_length])
        return None

    def _walk(self, node: Any, path: str) -> ThreatDetection | None:
        if isinstance(node, str):
            return self.check_string(node, path)
        if isinstance(node, Mapping):
            return self._walk_object(node, path)
        if isinstance(node, Sequence) and not isinstance(node, (bytes, bytearray)):
            for index, item in enumerate(node):
                detection = self._walk(item, f"{path}[{index}]")
                if detection is not None:
                    return detection
        # None, booleans and numbers carry no signature.
        return None

    def _walk_object(self, node: Mapping[Any, Any], path: str) -> ThreatDetection | None:
        for key, value in node.items():
            key_text = str(key)
            child_path = f"{path}.{key_text}" if path else key_text
            if key_text in DENYLISTED_KEYS:
                return ThreatDetection(CATEGORY_OPERATOR_KEY, child_path, key_text)
            detection = self._walk(value, child_path)
            if detection is not None:
                return detection
        return None
