"""
api/routes/v1/device_artifacts.py -- Device artifact routes for the VulnWatch REST API.

Routes:
  POST   /device-artifacts/integration-upload
  GET    /device-artifacts
  POST   /device-artifacts                        -- needs at least one artifact
  GET    /device-artifacts/{device_artifact_id}   -- includes artifact wrappers
  PUT    /device-artifacts/{device_artifact_id}   -- creator only
  DELETE /device-artifacts/{device_artifact_id}   -- creator only; drops all versions

Each entry in `artifacts` becomes a wrapper seeded with version 1. On PUT (and
on re-sync) an entry matching an existing wrapper by (name, artifactType)
appends a version when its downloadUrl or hash changed.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import DeviceArtifactResponse, IntegrationUpload, PaginatedResponse, SyncResultResponse
from api.routes.v1 import common
from auth.dependencies import get_current_user
from auth.models import User
from core.pagination import PageRequest
from inventory.kinds import DEVICE_ARTIFACT
from inventory.store import InventoryStore
from sync.inbound import DeviceArtifactInput, DeviceArtifactSyncItem

router = APIRouter(dependencies=[Depends(get_current_user)])


def _respond(request: Request, item) -> DeviceArtifactResponse:
    return DeviceArtifactResponse.model_validate(
        {**vars(item), "artifacts": common.wrappers_for(request, DEVICE_ARTIFACT, item.id)}
    )


@limiter.limit("10/minute")
@router.post("/device-artifacts/integration-upload", response_model=SyncResultResponse)
def upload_device_artifacts(
    request: Request,
    body: IntegrationUpload[DeviceArtifactSyncItem],
    user: User = Depends(get_current_user),
) -> SyncResultResponse:
    return common.integration_upload(request, DEVICE_ARTIFACT, body, user)


@limiter.limit("60/minute")
@router.get("/device-artifacts", response_model=PaginatedResponse[DeviceArtifactResponse])
def list_device_artifacts(
    request: Request,
    page: PageRequest = Depends(common.page_params),
) -> PaginatedResponse[DeviceArtifactResponse]:
    store: InventoryStore = request.app.state.inventory
    result = store.list_items(DEVICE_ARTIFACT, page)
    return PaginatedResponse[DeviceArtifactResponse].from_page(
        result, [_respond(request, d) for d in result.items]
    )


@limiter.limit("30/minute")
@router.post("/device-artifacts", response_model=DeviceArtifactResponse, status_code=201)
def create_device_artifact(
    request: Request,
    body: DeviceArtifactInput,
    user: User = Depends(get_current_user),
) -> DeviceArtifactResponse:
    store: InventoryStore = request.app.state.inventory
    item_id = common.create_item(request, DEVICE_ARTIFACT, body, user)
    return _respond(request, store.get_item(DEVICE_ARTIFACT, item_id))


@router.get("/device-artifacts/{device_artifact_id}", response_model=DeviceArtifactResponse)
def get_device_artifact(request: Request, device_artifact_id: int) -> DeviceArtifactResponse:
    store: InventoryStore = request.app.state.inventory
    return _respond(request, common.get_or_404(store, DEVICE_ARTIFACT, device_artifact_id))


@limiter.limit("30/minute")
@router.put("/device-artifacts/{device_artifact_id}", response_model=DeviceArtifactResponse)
def update_device_artifact(
    request: Request,
    device_artifact_id: int,
    body: DeviceArtifactInput,
    user: User = Depends(get_current_user),
) -> DeviceArtifactResponse:
    store: InventoryStore = request.app.state.inventory
    common.update_item(request, DEVICE_ARTIFACT, device_artifact_id, body, user)
    return _respond(request, store.get_item(DEVICE_ARTIFACT, device_artifact_id))


@limiter.limit("30/minute")
@router.delete("/device-artifacts/{device_artifact_id}", status_code=204)
def delete_device_artifact(
    request: Request,
    device_artifact_id: int,
    user: User = Depends(get_current_user),
) -> Response:
    common.delete_item(request, DEVICE_ARTIFACT, device_artifact_id, user)
    return Response(status_code=204)
