"""Google SERP parsing - pure HTML -> structured results.

Network access lives in `search_fetcher`; this module only turns markup into
`ParseResult`. Selectors come from `selectors.SelectorSet` so new markup
variants are additive.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import parse_qs, urlparse

from selectolax.parser import HTMLParser, Node

from src.core.logging import logger
from src.crawlers.google.selectors import DEFAULT_SELECTORS, SelectorSet


_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_STYLE_BLOCK = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
_EVENT_HANDLER_ATTR = re.compile(
    r"""\s+on[a-z]+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)""",
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r"\s+")


class ResultType(str, Enum):
    """Result entry type"""

    ORGANIC = "organic"
    FEATURED_SNIPPET = "featured_snippet"


@dataclass
class ParsedResult:
    """One SERP entry.

    Position 0 is reserved for the featured snippet; organic results are
    numbered from 1 in document order.
    """

    position: int
    type: ResultType
    title: Optional[str] = None
    url: Optional[str] = None
    snippet: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "position": self.position,
            "type": self.type.value,
            "title": self.title,
            "url": self.url,
        }
        if self.snippet is not None:
            data["snippet"] = self.snippet
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass
class ParseResult:
    organic_results: List[ParsedResult] = field(default_factory=list)
    featured_snippet: Optional[ParsedResult] = None
    total_ads: int = 0
    total_links: int = 0
    html_snapshot: str = ""

    @property
    def results(self) -> List[ParsedResult]:
        """Featured snippet (if any) followed by organic results"""
        head = [self.featured_snippet] if self.featured_snippet else []
        return head + list(self.organic_results)

    @property
    def result_count(self) -> int:
        return len(self.organic_results) + (1 if self.featured_snippet else 0)

    @property
    def is_empty(self) -> bool:
        return self.result_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organic_results": [r.to_dict() for r in self.organic_results],
            "featured_snippet": self.featured_snippet.to_dict() if self.featured_snippet else None,
            "total_ads": self.total_ads,
            "total_links": self.total_links,
        }


def clean_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip()


def sanitize_html(html: str) -> str:
    """Snapshot for storage: no script/style blocks, no inline handlers, collapsed whitespace."""
    if not html:
        return ""
    cleaned = _SCRIPT_BLOCK.sub("", html)
    cleaned = _STYLE_BLOCK.sub("", cleaned)
    cleaned = _EVENT_HANDLER_ATTR.sub("", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def normalize_result_url(href: Optional[str]) -> Optional[str]:
    """Resolve Google's `/url?q=<target>` redirect links to the target URL.

    Any other href is returned verbatim.
    """
    if not href:
        return None
    href = href.strip()
    if not href:
        return None

    parsed = urlparse(href)
    is_redirect = parsed.path == "/url" and (not parsed.netloc or "google." in parsed.netloc)
    if not is_redirect:
        return href

    params = parse_qs(parsed.query)
    for name in ("q", "url"):
        values = params.get(name)
        if values and values[0]:
            return values[0]
    return href


class GoogleResultParser:
    """Google search result page parser (selectolax).

    - Lenient: malformed markup never raises, it just matches less
    - One tree per call: results and ad/link counts share the same snapshot
    """

    def __init__(self, selectors: SelectorSet = DEFAULT_SELECTORS) -> None:
        self.selectors = selectors

    def parse(self, html: str) -> ParseResult:
        """Parse a SERP document.

        Args:
            html: raw response body

        Returns:
            ParseResult (empty when nothing matched)
        """
        result = ParseResult()
        if not html or not html.strip():
            return result

        result.html_snapshot = sanitize_html(html)

        try:
            tree = HTMLParser(html)
            result.total_links = len(tree.css(self.selectors.links))
            result.total_ads = self._count_ads(tree)

            featured_node = self._find_first(tree, self.selectors.featured_container)
            if featured_node is not None:
                result.featured_snippet = self._extract_featured_snippet(featured_node)

            containers = self._find_containers(tree, featured_node)
            for node in containers:
                parsed = self._extract_organic(node, position=len(result.organic_results) + 1)
                if parsed is not None:
                    result.organic_results.append(parsed)
        except Exception as e:
            logger.warning(
                f"[PARSER] Extraction aborted, returning partial result: {type(e).__name__}: {e} "
                f"(organic={len(result.organic_results)})"
            )

        logger.debug(
            f"[PARSER] organic={len(result.organic_results)}, "
            f"featured={result.featured_snippet is not None}, "
            f"ads={result.total_ads}, links={result.total_links}"
        )
        return result

    # ------------------------------------------------------------------
    # container discovery
    # ------------------------------------------------------------------

    def _find_containers(self, tree: HTMLParser, featured_node: Optional[Node]) -> List[Node]:
        """Union of every container selector's matches, document order.

        A candidate wrapping another candidate that resolves a title or link
        is a layout wrapper and is dropped; wrapped widgets that resolve
        neither (buttons, menus) leave their container alone.
        """
        candidates: Dict[int, Node] = {}
        for selector in self.selectors.organic_container:
            for node in tree.css(selector):
                candidates.setdefault(node.mem_id, node)

        if not candidates:
            return []

        excluded: set[int] = set()

        for node in candidates.values():
            if not self._has_title_or_link(node):
                continue
            parent = node.parent
            while parent is not None:
                if parent.mem_id in candidates:
                    excluded.add(parent.mem_id)
                parent = parent.parent

        if featured_node is not None:
            excluded.add(featured_node.mem_id)
            for node in candidates.values():
                if self._is_descendant_of(node, featured_node):
                    excluded.add(node.mem_id)
            parent = featured_node.parent
            while parent is not None:
                excluded.add(parent.mem_id)
                parent = parent.parent

        selected = {mem_id for mem_id in candidates if mem_id not in excluded}
        if not selected:
            return []

        root = tree.root
        if root is None:
            return [candidates[m] for m in selected]

        ordered: List[Node] = []
        for node in root.traverse(include_text=False):
            if node.mem_id in selected:
                ordered.append(candidates[node.mem_id])
        return ordered

    def _has_title_or_link(self, node: Node) -> bool:
        return bool(
            self._first_text(node, self.selectors.organic_title)
            or self._first_href(node, self.selectors.organic_link)
        )

    @staticmethod
    def _is_descendant_of(node: Node, ancestor: Node) -> bool:
        parent = node.parent
        while parent is not None:
            if parent.mem_id == ancestor.mem_id:
                return True
            parent = parent.parent
        return False

    @staticmethod
    def _find_first(scope: Any, selectors: Sequence[str]) -> Optional[Node]:
        for selector in selectors:
            node = scope.css_first(selector)
            if node is not None:
                return node
        return None

    def _first_text(self, scope: Node, selectors: Sequence[str]) -> Optional[str]:
        for selector in selectors:
            node = scope.css_first(selector)
            if node is None:
                continue
            text = clean_text(node.text())
            if text:
                return text
        return None

    def _first_href(self, scope: Node, selectors: Sequence[str]) -> Optional[str]:
        for selector in selectors:
            node = scope.css_first(selector)
            if node is None:
                continue
            href = normalize_result_url(node.attributes.get("href"))
            if href:
                return href
        return None

    # ------------------------------------------------------------------
    # extraction
    # ------------------------------------------------------------------

    def _extract_organic(self, node: Node, position: int) -> Optional[ParsedResult]:
        title = self._first_text(node, self.selectors.organic_title)
        url = self._first_href(node, self.selectors.organic_link)
        if not title and not url:
            return None

        metadata: Dict[str, str] = {}
        for key, selectors in self.selectors.metadata.items():
            value = self._first_text(node, selectors)
            if value:
                metadata[key] = value

        return ParsedResult(
            position=position,
            type=ResultType.ORGANIC,
            title=title,
            url=url,
            snippet=self._first_text(node, self.selectors.organic_snippet),
            metadata=metadata,
        )

    def _extract_featured_snippet(self, node: Node) -> Optional[ParsedResult]:
        title = self._first_text(node, self.selectors.featured_title)
        content = self._first_text(node, self.selectors.featured_content)
        if not title and not content:
            return None

        return ParsedResult(
            position=0,
            type=ResultType.FEATURED_SNIPPET,
            title=title,
            url=self._first_href(node, self.selectors.featured_link),
            snippet=content,
        )

    def _count_ads(self, tree: HTMLParser) -> int:
        seen: set[int] = set()
        for selector in self.selectors.ads:
            for node in tree.css(selector):
                seen.add(node.mem_id)
        return len(seen)
