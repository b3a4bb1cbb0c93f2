"""Browser User-Agent strings sent to the Axiom API, and a small UA parser."""

from __future__ import annotations

import random
import re

from pydantic import BaseModel

USER_AGENTS = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36",
    # Chrome on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    # Firefox
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:132.0) Gecko/20100101 Firefox/132.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (X11; Linux x86_64; rv:133.0) Gecko/20100101 Firefox/133.0",
    # Safari on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/18.1.1 Safari/605.1.15",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.6 Safari/605.1.15",
    # Edge on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36 Edg/130.0.0.0",
    # Chrome on Linux
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    # Opera, Vivaldi, Brave
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 OPR/117.0.0.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Vivaldi/6.9",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Brave/131",
    # Mobile
    "Mozilla/5.0 (Linux; Android 14; SM-G998B) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_6_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.6 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPad; CPU OS 17_6_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.6 Mobile/15E148 Safari/604.1",
]

_MOBILE_MARKERS = ("Mobile", "Android", "iPhone", "iPad")
_CHROMIUM_FORKS = ("Edg/", "OPR/", "Vivaldi", "Brave")

_BROWSER_FILTERS = {
    "chrome": lambda ua: "Chrome/" in ua and not any(m in ua for m in _CHROMIUM_FORKS),
    "firefox": lambda ua: "Firefox/" in ua,
    "safari": lambda ua: "Safari/" in ua and "Chrome/" not in ua,
    "edge": lambda ua: "Edg/" in ua,
    "opera": lambda ua: "OPR/" in ua,
    "vivaldi": lambda ua: "Vivaldi" in ua,
    "brave": lambda ua: "Brave" in ua,
}

# (marker, display name, version token); first match wins.
_BROWSER_SIGNATURES = [
    ("Edg/", "Microsoft Edge", "Edg/"),
    ("Firefox/", "Firefox", "Firefox/"),
    ("OPR/", "Opera", "OPR/"),
    ("Vivaldi", "Vivaldi", "Vivaldi/"),
    ("Brave", "Brave", "Brave/"),
    ("Chrome/", "Chrome", "Chrome/"),
    ("Safari/", "Safari", "Version/"),
]


class BrowserInfo(BaseModel):
    name: str = "Unknown"
    version: str = "Unknown"
    platform: str = "Unknown"
    is_mobile: bool = False


def get_random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def get_random_desktop_user_agent() -> str:
    return random.choice([ua for ua in USER_AGENTS if not any(m in ua for m in _MOBILE_MARKERS)])


def get_user_agent_for_browser(browser: str) -> str | None:
    """Random UA for a named browser (chrome, firefox, safari, edge, ...), or None."""
    predicate = _BROWSER_FILTERS.get(browser.lower())
    if predicate is None:
        return None
    candidates = [ua for ua in USER_AGENTS if predicate(ua)]
    return random.choice(candidates) if candidates else None


def _version_after(user_agent: str, token: str) -> str | None:
    match = re.search(re.escape(token) + r"([\w.]+)", user_agent)
    return match.group(1) if match else None


def parse_browser_info(user_agent: str) -> BrowserInfo:
    info = BrowserInfo()

    # Mobile platforms first: Android UAs also say "Linux", iOS UAs say "Mac OS X".
    if "Android" in user_agent:
        info.platform, info.is_mobile = "Android", True
    elif "iPhone" in user_agent or "iPad" in user_agent:
        info.platform, info.is_mobile = "iOS", True
    elif "Windows NT" in user_agent:
        info.platform = "Windows"
    elif "Macintosh" in user_agent or "Mac OS X" in user_agent:
        info.platform = "macOS"
    elif "Linux" in user_agent:
        info.platform = "Linux"

    for marker, name, version_token in _BROWSER_SIGNATURES:
        if marker in user_agent:
            info.name = name
            info.version = _version_after(user_agent, version_token) or "Unknown"
            break
    return info
