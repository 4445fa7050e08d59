"""
api/routes/v1/vulnerabilities.py -- Vulnerability routes for the VulnWatch REST API.

Routes:
  POST   /vulnerabilities/integration-upload
  GET    /vulnerabilities
  POST   /vulnerabilities
  GET    /vulnerabilities/{vulnerability_id}
  PUT    /vulnerabilities/{vulnerability_id}     -- creator only
  DELETE /vulnerabilities/{vulnerability_id}     -- creator only; linked remediations survive
  POST   /vulnerabilities/{vulnerability_id}/enrich -- creator only; EPSS + KEV lookup, priority

A vulnerability affects one or more device groups (one per CPE in `cpes`).
cveId is unique when present. epss, inKev and priority are read-only here;
only enrichment (this route or `python main.py enrich`) writes them.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import IntegrationUpload, PaginatedResponse, SyncResultResponse, VulnerabilityResponse
from api.routes.v1 import common
from auth.dependencies import get_current_user
from auth.models import User
from core.pagination import PageRequest
from inventory.kinds import VULNERABILITY
from inventory.store import InventoryStore
from sync.enrichment import VulnerabilityEnricher
from sync.inbound import VulnerabilityInput, VulnerabilitySyncItem

router = APIRouter(dependencies=[Depends(get_current_user)])


@limiter.limit("10/minute")
@router.post("/vulnerabilities/integration-upload", response_model=SyncResultResponse)
def upload_vulnerabilities(
    request: Request,
    body: IntegrationUpload[VulnerabilitySyncItem],
    user: User = Depends(get_current_user),
) -> SyncResultResponse:
    return common.integration_upload(request, VULNERABILITY, body, user)


@limiter.limit("60/minute")
@router.get("/vulnerabilities", response_model=PaginatedResponse[VulnerabilityResponse])
def list_vulnerabilities(
    request: Request,
    page: PageRequest = Depends(common.page_params),
) -> PaginatedResponse[VulnerabilityResponse]:
    store: InventoryStore = request.app.state.inventory
    result = store.list_items(VULNERABILITY, page)
    return PaginatedResponse[VulnerabilityResponse].from_page(
        result, [VulnerabilityResponse.model_validate(v) for v in result.items]
    )


@limiter.limit("30/minute")
@router.post("/vulnerabilities", response_model=VulnerabilityResponse, status_code=201)
def create_vulnerability(
    request: Request,
    body: VulnerabilityInput,
    user: User = Depends(get_current_user),
) -> VulnerabilityResponse:
    store: InventoryStore = request.app.state.inventory
    vuln_id = common.create_item(request, VULNERABILITY, body, user)
    return VulnerabilityResponse.model_validate(store.get_item(VULNERABILITY, vuln_id))


@router.get("/vulnerabilities/{vulnerability_id}", response_model=VulnerabilityResponse)
def get_vulnerability(request: Request, vulnerability_id: int) -> VulnerabilityResponse:
    store: InventoryStore = request.app.state.inventory
    return VulnerabilityResponse.model_validate(common.get_or_404(store, VULNERABILITY, vulnerability_id))


@limiter.limit("30/minute")
@router.put("/vulnerabilities/{vulnerability_id}", response_model=VulnerabilityResponse)
def update_vulnerability(
    request: Request,
    vulnerability_id: int,
    body: VulnerabilityInput,
    user: User = Depends(get_current_user),
) -> VulnerabilityResponse:
    store: InventoryStore = request.app.state.inventory
    common.update_item(request, VULNERABILITY, vulnerability_id, body, user)
    return VulnerabilityResponse.model_validate(store.get_item(VULNERABILITY, vulnerability_id))


@limiter.limit("30/minute")
@router.delete("/vulnerabilities/{vulnerability_id}", status_code=204)
def delete_vulnerability(request: Request, vulnerability_id: int, user: User = Depends(get_current_user)) -> Response:
    common.delete_item(request, VULNERABILITY, vulnerability_id, user)
    return Response(status_code=204)


@limiter.limit("10/minute")
@router.post("/vulnerabilities/{vulnerability_id}/enrich", response_model=VulnerabilityResponse)
def enrich_vulnerability(
    request: Request,
    vulnerability_id: int,
    user: User = Depends(get_current_user),
) -> VulnerabilityResponse:
    """Refresh EPSS and CISA KEV status now and recompute priority.

    Makes outbound calls to FIRST.org and CISA, hence the tight rate limit.
    A vulnerability without a cveId is returned unchanged.
    """
    store: InventoryStore = request.app.state.inventory
    enricher: VulnerabilityEnricher = request.app.state.enricher
    existing = common.get_or_404(store, VULNERABILITY, vulnerability_id)
    common.require_owner(existing.user_id, user, "vulnerability")
    enricher.enrich(vulnerability_id)
    return VulnerabilityResponse.model_validate(store.get_item(VULNERABILITY, vulnerability_id))
