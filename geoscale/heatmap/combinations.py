"""Keyword + location phrase building for new combinations."""

import re
from typing import Iterable, List


def build_phrase(keyword: str, location: str) -> str:
    """
    Combine a keyword and a town into a search phrase.

    "plumber near me" + "Doncaster" -> "plumber near doncaster"
    "web design" + "Doncaster"      -> "web design in doncaster"
    """
    keyword = keyword.strip()
    location = location.strip()
    if "near me" in keyword.lower():
        phrase = re.sub(r"near me", lambda _: f"near {location}", keyword, flags=re.IGNORECASE)
    else:
        phrase = f"{keyword} in {location}"
    return phrase.lower()


def build_phrases(keywords: Iterable[str], locations: Iterable[str]) -> List[str]:
    """Every keyword x location phrase, de-duplicated, in input order."""
    locations = list(locations)
    phrases: List[str] = []
    seen = set()
    for keyword in keywords:
        if not keyword or not keyword.strip():
            continue
        for location in locations:
            phrase = build_phrase(keyword, location)
            if phrase not in seen:
                seen.add(phrase)
                phrases.append(phrase)
    return phrases
