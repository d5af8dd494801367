"""Google SERP selector fallback lists.

Every semantic field maps to an ordered tuple of CSS selectors, tried in
order. Markup variants are handled by appending selectors here, not by adding
branches to the parser.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class SelectorSet:
    organic_container: Tuple[str, ...] = (
        "div.g",
        "div.Gx5Zad",
        "div[jscontroller]",
    )
    organic_title: Tuple[str, ...] = (
        "h3",
        "div.vvjwJb",
        "div.fc9yUc",
    )
    organic_link: Tuple[str, ...] = (
        "a[ping]",
        "a[data-ved]",
        "a[jsname]",
        "a[href]",
    )
    organic_snippet: Tuple[str, ...] = (
        "div.VwiC3b",
        "div.s3v9rd",
        'div[role="heading"]',
    )

    featured_container: Tuple[str, ...] = (
        "div.xpdopen",
        "div.g.kno-result",
        "div.ifM9O",
    )
    featured_title: Tuple[str, ...] = (
        "h3",
        "div.title",
    )
    featured_content: Tuple[str, ...] = (
        "div.LGOjhe",
        "div.IZ6rdc",
        "span.hgKElc",
    )
    featured_link: Tuple[str, ...] = (
        "a[href]",
    )

    # metadata key -> selectors; keys missing from a container are omitted
    metadata: Dict[str, Tuple[str, ...]] = field(default_factory=lambda: {
        "date": ("span.MUxGbd.wuQ4Ob.WZ8Tjf", "span.LEwnzc"),
        "rating": ("span.Fam1ne.EBe2gf", "span.yi40Hd"),
    })

    ads: Tuple[str, ...] = (
        "div.uEierd",
        "div.Krnil",
        "div[data-text-ad]",
    )
    links: str = "a[href]"


DEFAULT_SELECTORS = SelectorSet()
