"""
Business matching in Google Maps results.

A listing matches when any of these holds:
1. Title contains the business name, or the business name contains the title
2. Any significant business word partially matches a title word
3. Listing domain matches the project's website domain
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

# Company-form words that would match unrelated listings
GENERIC_NAME_WORDS = {"ltd", "limited", "llc", "inc", "plc", "the", "and", "company"}


def normalize_name(name: Optional[str]) -> str:
    return (name or "").lower().strip()


def extract_domain(url: Optional[str]) -> str:
    """Bare hostname from a website URL ('' when none)."""
    if not url:
        return ""
    url = url.strip()
    parsed = urlparse(url if "://" in url else f"https://{url}")
    host = parsed.hostname or ""
    return host[4:] if host.startswith("www.") else host


def significant_words(text: str) -> List[str]:
    return [
        w for w in re.split(r"\s+", text)
        if len(w) > 2 and w not in GENERIC_NAME_WORDS
    ]


@dataclass
class BusinessTarget:
    """The listing a scan is looking for."""
    name: str
    domain: str = ""

    @classmethod
    def from_project(
        cls,
        project_name: str,
        company_name: Optional[str] = None,
        blog_url: Optional[str] = None,
    ) -> "BusinessTarget":
        """Company name wins over project name; domain comes from the blog URL."""
        return cls(
            name=normalize_name(company_name or project_name),
            domain=extract_domain(blog_url),
        )

    def matches(self, item: Dict[str, Any]) -> bool:
        title = normalize_name(item.get("title"))
        if not title:
            return False

        if self.name and (self.name in title or title in self.name):
            return True

        title_words = significant_words(title)
        for business_word in significant_words(self.name):
            if any(business_word in tw or tw in business_word for tw in title_words):
                return True

        item_domain = extract_domain(item.get("domain"))
        if self.domain and item_domain:
            if self.domain in item_domain or item_domain in self.domain:
                return True

        return False


def find_business_position(
    items: List[Dict[str, Any]],
    target: BusinessTarget,
) -> Tuple[Optional[int], Optional[Dict[str, Any]]]:
    """
    Locate the target business in Maps results.

    Returns:
        (position, matching item), or (None, None) when not found. Position is
        the item's rank_group, falling back to rank_absolute, then its 1-based
        index in the result list.
    """
    for index, item in enumerate(items or [], start=1):
        if target.matches(item):
            position = item.get("rank_group") or item.get("rank_absolute") or index
            return int(position), item
    return None, None


def count_businesses(items: List[Dict[str, Any]]) -> int:
    """Number of business listings returned for a point (local density)."""
    return sum(1 for item in items or [] if item.get("title"))
