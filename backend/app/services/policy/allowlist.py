"""
Evidence / target domain allow-list.

Only URLs on these hosts (or their subdomains) may appear in evidence lists
or be auto-actioned.
"""
from typing import Iterable, List, Optional
from urllib.parse import urlparse

ALLOWED_DOMAINS = frozenset({
    "justdial.com",
    "sulekha.com",
    "indiamart.com",
    "spokeo.com",
    "whitepages.com",
    "beenverified.com",
    "truecaller.com",
    "naukri.com",
    "olx.in",
    "shine.com",
    "timesjobs.com",
})


def hostname_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    host = (parsed.hostname or "").lower()
    return host or None


def is_allowed(url: Optional[str], domains: Iterable[str] = ALLOWED_DOMAINS) -> bool:
    host = hostname_of(url)
    if not host:
        return False
    return any(host == d or host.endswith("." + d) for d in domains)


def filter_allowed(urls: Iterable[Optional[str]], cap: int) -> List[str]:
    """Allow-listed, deduplicated (first occurrence wins), capped."""
    out: List[str] = []
    seen = set()
    for url in urls:
        if not url:
            continue
        u = url.strip()
        if u in seen or not is_allowed(u):
            continue
        seen.add(u)
        out.append(u)
        if len(out) >= cap:
            break
    return out
