# src/koharu/release.py: GitHub release notes for the update preview.
# This module fetches the release notes of the version an update would move to.
# The data is cosmetic: every failure, including a slow network, yields None and
# the update proceeds without it.

import re
from dataclasses import dataclass
from typing import List, Optional

import requests

from .upstream import normalize_tag
from .util.log import get_logger

logger = get_logger(__name__)

API_URL = "https://api.github.com/repos/{repo}/releases/tags/{tag}"
RELEASE_PAGE_URL = "https://github.com/{repo}/releases/tag/{tag}"
USER_AGENT = "koharu-cli"

_HEADING = re.compile(r"^#{1,6}\s*")


@dataclass(frozen=True)
class ReleaseInfo:
    tag_name: str
    url: str
    body: Optional[str] = None


def fetch_release_info(repo: str, version: str, timeout: float = 3.0) -> Optional[ReleaseInfo]:
    """Release metadata for `version`, or None if it cannot be fetched in time."""
    tag = normalize_tag(version)
    url = API_URL.format(repo=repo, tag=tag)
    try:
        response = requests.get(
            url,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": USER_AGENT,
            },
            timeout=timeout,
        )
        if not response.ok:
            logger.debug(f"Release lookup for {tag} returned HTTP {response.status_code}")
            return None
        data = response.json()
        return ReleaseInfo(
            tag_name=data.get("tag_name", tag),
            url=data.get("html_url") or build_release_url(repo, tag),
            body=data.get("body") or None,
        )
    except (requests.RequestException, ValueError) as e:
        logger.debug(f"Release lookup for {tag} failed: {e}")
        return None


def build_release_url(repo: str, version: str) -> str:
    """Release page URL, built without calling the API."""
    return RELEASE_PAGE_URL.format(repo=repo, tag=normalize_tag(version))


def extract_release_summary(body: Optional[str], max_lines: int = 5, max_chars: int = 300) -> List[str]:
    """
    First few non-empty lines of a Markdown release body, headings unmarked.

    Stops at `max_lines` lines or once `max_chars` characters were taken, and
    appends '...' when anything was cut.
    """
    if not body:
        return []

    lines = [_HEADING.sub("", line.strip()) for line in body.splitlines()]
    lines = [line for line in lines if line]

    result: List[str] = []
    total_chars = 0
    for line in lines:
        if len(result) >= max_lines or total_chars >= max_chars:
            break
        result.append(line)
        total_chars += len(line)

    if len(result) < len(lines):
        result.append("...")
    return result
