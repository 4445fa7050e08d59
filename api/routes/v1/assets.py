"""
api/routes/v1/assets.py -- Asset routes for the VulnWatch REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST   /assets/integration-upload  -- reconcile a partner batch
  GET    /assets                     -- paginated list (page, pageSize, search)
  POST   /assets                     -- create asset
  GET    /assets/{asset_id}          -- asset detail
  PUT    /assets/{asset_id}          -- replace asset fields (creator only)
  DELETE /assets/{asset_id}          -- delete asset (creator only)

hostname, macAddress and serialNumber are each unique across all assets; a
manual create that reuses one answers 409.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import AssetResponse, IntegrationUpload, PaginatedResponse, SyncResultResponse
from api.routes.v1 import common
from auth.dependencies import get_current_user
from auth.models import User
from core.pagination import PageRequest
from inventory.kinds import ASSET
from inventory.store import InventoryStore
from sync.inbound import AssetInput, AssetSyncItem

router = APIRouter(dependencies=[Depends(get_current_user)])


@limiter.limit("10/minute")
@router.post("/assets/integration-upload", response_model=SyncResultResponse)
def upload_assets(
    request: Request,
    body: IntegrationUpload[AssetSyncItem],
    user: User = Depends(get_current_user),
) -> SyncResultResponse:
    """Create or update assets reported by an integration, keyed by vendorId."""
    return common.integration_upload(request, ASSET, body, user)


@limiter.limit("60/minute")
@router.get("/assets", response_model=PaginatedResponse[AssetResponse])
def list_assets(request: Request, page: PageRequest = Depends(common.page_params)) -> PaginatedResponse[AssetResponse]:
    """Return assets newest first. search matches ip, role, hostname and serial number."""
    store: InventoryStore = request.app.state.inventory
    result = store.list_items(ASSET, page)
    return PaginatedResponse[AssetResponse].from_page(
        result, [AssetResponse.model_validate(a) for a in result.items]
    )


@limiter.limit("30/minute")
@router.post("/assets", response_model=AssetResponse, status_code=201)
def create_asset(request: Request, body: AssetInput, user: User = Depends(get_current_user)) -> AssetResponse:
    """Register an asset. Its CPE's device group is created if it does not exist yet."""
    store: InventoryStore = request.app.state.inventory
    asset_id = common.create_item(request, ASSET, body, user)
    return AssetResponse.model_validate(store.get_item(ASSET, asset_id))


@router.get("/assets/{asset_id}", response_model=AssetResponse)
def get_asset(request: Request, asset_id: int) -> AssetResponse:
    store: InventoryStore = request.app.state.inventory
    return AssetResponse.model_validate(common.get_or_404(store, ASSET, asset_id))


@limiter.limit("30/minute")
@router.put("/assets/{asset_id}", response_model=AssetResponse)
def update_asset(
    request: Request,
    asset_id: int,
    body: AssetInput,
    user: User = Depends(get_current_user),
) -> AssetResponse:
    store: InventoryStore = request.app.state.inventory
    common.update_item(request, ASSET, asset_id, body, user)
    return AssetResponse.model_validate(store.get_item(ASSET, asset_id))


@limiter.limit("30/minute")
@router.delete("/assets/{asset_id}", status_code=204)
def delete_asset(request: Request, asset_id: int, user: User = Depends(get_current_user)) -> Response:
    """Delete an asset and its external mappings."""
    common.delete_item(request, ASSET, asset_id, user)
    return Response(status_code=204)
