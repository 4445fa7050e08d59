"""
sync/enrichment.py -- Threat-based prioritization of vulnerabilities.

For every vulnerability with a CVE id, look up its EPSS probability and CISA
KEV membership (sync/threat_feeds.py) and derive a priority:

                      CVSS >= 7.0    CVSS < 7.0
    in KEV            Critical       Monitor
    EPSS >= 0.088     High           Monitor
    otherwise         Defer          Defer

A vulnerability missing either EPSS or a CVSS score stays Unsorted. The
0.088 EPSS cut-off comes from the EPSS-vs-KEV coverage analysis in
https://arxiv.org/pdf/2506.01220 (figure 1).

A feed that cannot be reached leaves the stored value untouched; the priority
is recomputed from whatever is stored. enrich_all() is the daily job
(`python main.py enrich`); enrich() serves the per-vulnerability API route.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from core.config import to_iso
from inventory.errors import NotFoundError
from inventory.kinds import VULNERABILITY
from inventory.models import (
    PRIORITY_CRITICAL,
    PRIORITY_DEFER,
    PRIORITY_HIGH,
    PRIORITY_MONITOR,
    PRIORITY_UNSORTED,
)
from inventory.store import InventoryStore
from sync.threat_feeds import fetch_epss, fetch_kev

logger = logging.getLogger("vulnwatch.enrichment")

HIGH_CVSS = 7.0
EPSS_THRESHOLD = 0.088


def compute_priority(epss: Optional[float], cvss_score: Optional[float], in_kev: bool) -> str:
    # A score of exactly 0 carries no signal either.
    if not epss or not cvss_score:
        return PRIORITY_UNSORTED
    if in_kev:
        return PRIORITY_CRITICAL if cvss_score >= HIGH_CVSS else PRIORITY_MONITOR
    if epss >= EPSS_THRESHOLD:
        return PRIORITY_HIGH if cvss_score >= HIGH_CVSS else PRIORITY_MONITOR
    return PRIORITY_DEFER


@dataclass
class EnrichmentOutcome:
    vulnerability_id: int
    cve_id: Optional[str]
    epss: Optional[float]
    in_kev: bool
    priority: str
    skipped: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VulnerabilityEnricher:
    def __init__(
        self,
        store: InventoryStore,
        epss_lookup: Callable[[str], Optional[float]] = fetch_epss,
        kev_lookup: Callable[[], Optional[frozenset]] = fetch_kev,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.epss_lookup = epss_lookup
        self.kev_lookup = kev_lookup
        self.clock = clock

    def enrich(self, vulnerability_id: int) -> EnrichmentOutcome:
        """Refresh one vulnerability. Raises NotFoundError if it does not exist."""
        return self._enrich(vulnerability_id, self.kev_lookup())

    def enrich_all(self) -> list[EnrichmentOutcome]:
        """Refresh every vulnerability that has a CVE id, fetching the KEV catalog once."""
        catalog = self.kev_lookup()
        outcomes = []
        for vulnerability_id in self.store.vulnerability_ids_with_cve():
            try:
                outcomes.append(self._enrich(vulnerability_id, catalog))
            except NotFoundError:
                logger.info("Vulnerability %d deleted during enrichment, skipping", vulnerability_id)
        logger.info("Enriched %d vulnerabilities", len(outcomes))
        return outcomes

    def _enrich(self, vulnerability_id: int, catalog: Optional[frozenset]) -> EnrichmentOutcome:
        vuln = self.store.get_item(VULNERABILITY, vulnerability_id)
        if vuln is None:
            raise NotFoundError(VULNERABILITY.resource_type, vulnerability_id)
        if not vuln.cve_id:
            return EnrichmentOutcome(vuln.id, None, vuln.epss, vuln.in_kev, vuln.priority, skipped=True)

        now = to_iso(self.clock())
        values = {}
        epss = self.epss_lookup(vuln.cve_id)
        if epss is None:
            epss = vuln.epss
        else:
            values.update(epss=epss, epss_updated_at=now)
        in_kev = vuln.in_kev
        if catalog is not None:
            in_kev = vuln.cve_id.upper() in catalog
            values.update(in_kev=in_kev, kev_updated_at=now)
        priority = compute_priority(epss, vuln.cvss_score, in_kev)
        values["priority"] = priority

        if not self.store.set_threat_scores(vuln.id, **values):
            raise NotFoundError(VULNERABILITY.resource_type, vulnerability_id)
        logger.info("%s (#%d): epss=%s kev=%s -> %s", vuln.cve_id, vuln.id, epss, in_kev, priority)
        return EnrichmentOutcome(vuln.id, vuln.cve_id, epss, in_kev, priority)
