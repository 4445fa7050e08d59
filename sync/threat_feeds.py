"""
sync/threat_feeds.py -- Public exploit-likelihood feeds used to prioritize vulnerabilities.

Two free sources, no API keys:
  EPSS (FIRST.org)  -- probability a CVE is exploited in the next 30 days
  CISA KEV          -- catalog of CVEs known to be exploited in the wild

Both lookups are best-effort: a network or parse failure is logged and comes
back as None ("unknown"), never as an exception. Callers must not read None
as "not exploited"; sync/enrichment.py keeps the previous value instead.
"""

import logging
from typing import Optional

import requests

logger = logging.getLogger("vulnwatch.enrichment")

EPSS_API = "https://api.first.org/data/v1/epss"
CISA_KEV_URL = "https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json"

# Public, well-known hosts: three redirect hops is already generous.
_session = requests.Session()
_session.max_redirects = 3


def fetch_epss(cve_id: str, timeout: float = 15.0) -> Optional[float]:
    """Return the EPSS probability (0..1) for cve_id, or None if unknown."""
    try:
        resp = _session.get(EPSS_API, params={"cve": cve_id}, timeout=timeout)
        resp.raise_for_status()
        data = resp.json().get("data") or []
        if not data or data[0].get("epss") in (None, ""):
            return None
        return float(data[0]["epss"])
    except (requests.RequestException, ValueError, TypeError, AttributeError) as e:
        logger.warning("EPSS lookup failed for %s: %s", cve_id, e)
        return None


def fetch_kev(timeout: float = 30.0) -> Optional[frozenset[str]]:
    """Return the upper-cased CVE ids in the CISA KEV catalog, or None if unavailable."""
    try:
        resp = _session.get(CISA_KEV_URL, timeout=timeout)
        resp.raise_for_status()
        entries = resp.json().get("vulnerabilities") or []
        return frozenset(e["cveID"].upper() for e in entries if e.get("cveID"))
    except (requests.RequestException, ValueError, TypeError, AttributeError) as e:
        logger.warning("Could not fetch CISA KEV feed: %s", e)
        return None
