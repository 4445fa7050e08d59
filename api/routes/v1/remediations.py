"""
api/routes/v1/remediations.py -- Remediation routes for the VulnWatch REST API.

Routes:
  POST   /remediations/integration-upload
  GET    /remediations
  POST   /remediations                      -- needs at least one artifact
  GET    /remediations/{remediation_id}     -- includes artifact wrappers
  PUT    /remediations/{remediation_id}     -- creator only
  DELETE /remediations/{remediation_id}     -- creator only; drops all versions

vulnerabilityId, when given, must name an existing vulnerability.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import IntegrationUpload, PaginatedResponse, RemediationResponse, SyncResultResponse
from api.routes.v1 import common
from auth.dependencies import get_current_user
from auth.models import User
from core.pagination import PageRequest
from inventory.kinds import REMEDIATION, VULNERABILITY
from inventory.store import InventoryStore
from sync.inbound import RemediationInput, RemediationSyncItem

router = APIRouter(dependencies=[Depends(get_current_user)])


def _respond(request: Request, item) -> RemediationResponse:
    return RemediationResponse.model_validate(
        {**vars(item), "artifacts": common.wrappers_for(request, REMEDIATION, item.id)}
    )


def _check_vulnerability(store: InventoryStore, body: RemediationInput) -> None:
    if body.vulnerability_id is not None:
        common.get_or_404(store, VULNERABILITY, body.vulnerability_id)


@limiter.limit("10/minute")
@router.post("/remediations/integration-upload", response_model=SyncResultResponse)
def upload_remediations(
    request: Request,
    body: IntegrationUpload[RemediationSyncItem],
    user: User = Depends(get_current_user),
) -> SyncResultResponse:
    return common.integration_upload(request, REMEDIATION, body, user)


@limiter.limit("60/minute")
@router.get("/remediations", response_model=PaginatedResponse[RemediationResponse])
def list_remediations(
    request: Request,
    page: PageRequest = Depends(common.page_params),
) -> PaginatedResponse[RemediationResponse]:
    store: InventoryStore = request.app.state.inventory
    result = store.list_items(REMEDIATION, page)
    return PaginatedResponse[RemediationResponse].from_page(result, [_respond(request, r) for r in result.items])


@limiter.limit("30/minute")
@router.post("/remediations", response_model=RemediationResponse, status_code=201)
def create_remediation(
    request: Request,
    body: RemediationInput,
    user: User = Depends(get_current_user),
) -> RemediationResponse:
    store: InventoryStore = request.app.state.inventory
    _check_vulnerability(store, body)
    item_id = common.create_item(request, REMEDIATION, body, user)
    return _respond(request, store.get_item(REMEDIATION, item_id))


@router.get("/remediations/{remediation_id}", response_model=RemediationResponse)
def get_remediation(request: Request, remediation_id: int) -> RemediationResponse:
    store: InventoryStore = request.app.state.inventory
    return _respond(request, common.get_or_404(store, REMEDIATION, remediation_id))


@limiter.limit("30/minute")
@router.put("/remediations/{remediation_id}", response_model=RemediationResponse)
def update_remediation(
    request: Request,
    remediation_id: int,
    body: RemediationInput,
    user: User = Depends(get_current_user),
) -> RemediationResponse:
    store: InventoryStore = request.app.state.inventory
    _check_vulnerability(store, body)
    common.update_item(request, REMEDIATION, remediation_id, body, user)
    return _respond(request, store.get_item(REMEDIATION, remediation_id))


@limiter.limit("30/minute")
@router.delete("/remediations/{remediation_id}", status_code=204)
def delete_remediation(request: Request, remediation_id: int, user: User = Depends(get_current_user)) -> Response:
    common.delete_item(request, REMEDIATION, remediation_id, user)
    return Response(status_code=204)
