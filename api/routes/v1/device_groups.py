"""
api/routes/v1/device_groups.py -- Device group (CPE classification) routes.

Groups are created implicitly the first time any item names a CPE; there is
no POST. PATCH fills in the descriptive fields a partner never sends.
"""

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import DeviceGroupPatch, DeviceGroupResponse, PaginatedResponse
from api.routes.v1 import common
from auth.dependencies import get_current_user
from core.pagination import PageRequest
from inventory.errors import NotFoundError
from inventory.store import InventoryStore

router = APIRouter(dependencies=[Depends(get_current_user)])


@limiter.limit("60/minute")
@router.get("/device-groups", response_model=PaginatedResponse[DeviceGroupResponse])
def list_device_groups(
    request: Request,
    page: PageRequest = Depends(common.page_params),
) -> PaginatedResponse[DeviceGroupResponse]:
    store: InventoryStore = request.app.state.inventory
    result = store.list_groups(page)
    return PaginatedResponse[DeviceGroupResponse].from_page(
        result, [DeviceGroupResponse.model_validate(g) for g in result.items]
    )


@router.get("/device-groups/{group_id}", response_model=DeviceGroupResponse)
def get_device_group(request: Request, group_id: int) -> DeviceGroupResponse:
    store: InventoryStore = request.app.state.inventory
    group = store.get_group(group_id)
    if group is None:
        raise NotFoundError("Device group", group_id)
    return DeviceGroupResponse.model_validate(group)


@limiter.limit("30/minute")
@router.patch("/device-groups/{group_id}", response_model=DeviceGroupResponse)
def patch_device_group(request: Request, group_id: int, body: DeviceGroupPatch) -> DeviceGroupResponse:
    """Enrich manufacturer, modelName and version. Omitted fields are left alone."""
    store: InventoryStore = request.app.state.inventory
    fields = body.model_dump(exclude_none=True)
    group = store.update_group(group_id, **fields) if fields else store.get_group(group_id)
    if group is None:
        raise NotFoundError("Device group", group_id)
    return DeviceGroupResponse.model_validate(group)
