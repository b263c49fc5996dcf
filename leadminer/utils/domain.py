"""Domain and company-name normalization.

Every function here is pure and never raises: bad input collapses to "" so
comparisons downstream simply fail to match.

Known limitation: are_similar_company_names() treats any substring of length
> 3 as similar, so short generic names ("Acme" vs "Acme Robotics") match.
Dedup callers rely on this behavior.
"""

import re
from urllib.parse import urlparse

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_WWW_RE = re.compile(r"^(?:www\.)+", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_SPACES_RE = re.compile(r"\s+")


def extract_main_domain(url) -> str:
    """Canonical domain for a URL or bare website string.

    "https://www.TechCloud.com:443/about?x=1" -> "techcloud.com"
    """
    if not url or not isinstance(url, str):
        return ""
    d = url.strip()
    d = _SCHEME_RE.sub("", d).strip()
    d = _WWW_RE.sub("", d)
    for sep in ("/", "?", "#", ":"):
        d = d.split(sep)[0]
    return d.strip().lower()


def normalize_company_name(name) -> str:
    """Lower-case, drop punctuation, collapse whitespace."""
    if not name or not isinstance(name, str):
        return ""
    n = _NON_ALNUM_RE.sub("", name.lower())
    return _SPACES_RE.sub(" ", n).strip()


def are_same_domain(a, b) -> bool:
    return extract_main_domain(a) == extract_main_domain(b)


def are_similar_company_names(a, b) -> bool:
    """Equal after normalization, or one contains the other (both > 3 chars)."""
    n1 = normalize_company_name(a)
    n2 = normalize_company_name(b)
    if n1 == n2:
        return True
    if len(n1) > 3 and len(n2) > 3:
        return n1 in n2 or n2 in n1
    return False


def extract_email_domain(email) -> str:
    if not email or not isinstance(email, str):
        return ""
    parts = email.split("@")
    return parts[1].strip().lower() if len(parts) == 2 else ""


def hostname_domain(link) -> str:
    """Hostname of an absolute URL minus "www.", or "" if unparseable."""
    if not link or not isinstance(link, str):
        return ""
    try:
        host = urlparse(link.strip()).hostname or ""
    except ValueError:
        return ""
    return _WWW_RE.sub("", host.lower())
