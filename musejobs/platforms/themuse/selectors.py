"""HTML selector and pattern constants for the fallback extractor.

Each selector constant is a tuple so callers iterate until a match is found.
"""

import re

# --- Structured data ---
JSONLD_SCRIPT_SELECTOR: str = 'script[type="application/ld+json"]'
JOB_TYPE_MARKER: str = "job"

# --- Job links ---
JOB_PATH_RE = re.compile(r"/jobs?/", re.IGNORECASE)
IGNORED_HREF_PREFIXES: tuple[str, ...] = ("#", "javascript:", "mailto:", "tel:")

# --- Detail page title ---
TITLE_SELECTORS: tuple[str, ...] = (
    "h1",
    'meta[property="og:title"]',
    "title",
)

# --- Pagination ---
NEXT_REL_SELECTORS: tuple[str, ...] = (
    'link[rel~="next"][href]',
    'a[rel~="next"][href]',
)
NEXT_CANDIDATE_TAGS: tuple[str, ...] = ("a", "button")
NEXT_HREF_ATTRS: tuple[str, ...] = ("href", "data-href")
NEXT_MARKER: str = "next"
NEXT_WORD_RE = re.compile(r"\bnext\b", re.IGNORECASE)
PAGE_PARAM: str = "page"
