"""Path and date heuristics for release-notes documents

These are deliberately approximate. Each is a pure function taking its
tables as arguments so callers can swap them out.
"""

import re
from datetime import date, datetime

DEFAULT_MARKERS: tuple[str, ...] = ("whats-new", "what-s-new", "release-notes")
DOCUMENT_EXTENSIONS: tuple[str, ...] = (".md",)
DEFAULT_PRODUCT = "Dynamics 365"

# Matched in order against the lowercased path; first hit wins.
DEFAULT_PRODUCT_MAPPING: dict[str, str] = {
    "finance": "Dynamics 365 Finance",
    "supply-chain": "Dynamics 365 Supply Chain Management",
    "human-resources": "Dynamics 365 Human Resources",
    "commerce": "Dynamics 365 Commerce",
    "fin-ops-core": "Finance and Operations Core",
    "project-operations": "Dynamics 365 Project Operations",
    "customer-service": "Dynamics 365 Customer Service",
    "sales": "Dynamics 365 Sales",
    "marketing": "Dynamics 365 Marketing",
    "field-service": "Dynamics 365 Field Service",
    "business-central": "Dynamics 365 Business Central",
    "fraud-protection": "Dynamics 365 Fraud Protection",
    "mixed-reality": "Dynamics 365 Mixed Reality",
    "contact-center": "Dynamics 365 Contact Center",
    "intelligent-order-management": "Dynamics 365 Intelligent Order Management",
    "industry": "Dynamics 365 Industry Solutions",
    "supply-chain-insights": "Dynamics 365 Supply Chain Insights",
    "guidance": "Dynamics 365 Guidance",
    "dynamicsax2012": "Dynamics AX 2012",
    "dynamics-nav": "Dynamics NAV",
    "dynamics-gp": "Dynamics GP",
}

_VERSION_PATTERN = re.compile(r"(\d+)[.-]0[.-](\d+)")
_RELEASE_DATE_FORMATS = ("%m/%d/%Y", "%Y-%m-%d")


def is_release_notes_path(path: str, markers: tuple[str, ...] = DEFAULT_MARKERS) -> bool:
    """True if the path contains one of the marker substrings (case-insensitive)"""
    lower_path = path.lower()
    return any(marker in lower_path for marker in markers)


def has_document_extension(path: str, extensions: tuple[str, ...] = DOCUMENT_EXTENSIONS) -> bool:
    return path.lower().endswith(extensions)


def is_under_prefix(path: str, base_path: str) -> bool:
    if not base_path:
        return True
    return path.startswith(base_path)


def infer_product(
    path: str,
    mapping: dict[str, str] | None = None,
    default: str | None = None,
) -> str:
    """Label of the first mapping keyword found in the path, else the default"""
    mapping = DEFAULT_PRODUCT_MAPPING if mapping is None else mapping
    lower_path = path.lower()
    for keyword, label in mapping.items():
        if keyword in lower_path:
            return label
    return default or DEFAULT_PRODUCT


def extract_version(path: str) -> str | None:
    """Extract 10-0-41 / 10.0.41 style versions, normalized to 10.0.N"""
    match = _VERSION_PATTERN.search(path)
    if match:
        return f"10.0.{match.group(2)}"
    return None


def normalize_release_date(value: str | date | None) -> str | None:
    """Normalize a front-matter date (M/D/YYYY or YYYY-MM-DD) to ISO YYYY-MM-DD"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    for fmt in _RELEASE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _parse_day(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def classify_change(
    first_observed: str | None,
    last_change: str | None,
    threshold_days: int = 30,
) -> str:
    """Classify a document as "new" or "updated"

    A document counts as new when its last change happened within
    ``threshold_days`` of the first time it was observed. Unknown dates
    classify as "updated".
    """
    first = _parse_day(first_observed)
    last = _parse_day(last_change)
    if first is None or last is None:
        return "updated"
    return "new" if (last - first).days <= threshold_days else "updated"


def build_file_url(web_url: str, owner: str, repo: str, branch: str, path: str) -> str:
    return f"{web_url.rstrip('/')}/{owner}/{repo}/blob/{branch}/{path}"


def build_raw_url(raw_url: str, owner: str, repo: str, branch: str, path: str) -> str:
    return f"{raw_url.rstrip('/')}/{owner}/{repo}/{branch}/{path}"


def build_commits_url(file_url: str) -> str:
    """Commit history page for a browsable file URL"""
    return file_url.replace("/blob/", "/commits/", 1)
