"""
api/routes/v1/integrations.py -- Integration management routes.

Routes:
  POST   /integrations/sync-due          -- run one scheduler pass (admin only)
  POST   /integrations                   -- register an integration; returns its API key once
  GET    /integrations                   -- paginated list, optional ?resourceType=
  GET    /integrations/{integration_id}  -- detail with retained sync history
  DELETE /integrations/{integration_id}  -- owner only; mappings and history go, items stay

Creating an integration also creates its service user and an API key for
it. The partner uses that key on /{kind}/integration-upload, and items it
creates are owned by the service user.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.limiter import limiter
from api.models import (
    IntegrationCreate,
    IntegrationCreatedResponse,
    IntegrationResponse,
    PaginatedResponse,
    ResourceTypeEnum,
    ScheduledRunResponse,
    SyncRecordResponse,
    SyncResultResponse,
)
from api.routes.v1 import common
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from auth.store import UserStore
from core.pagination import PageRequest
from inventory.errors import NotFoundError
from inventory.models import Integration
from inventory.store import InventoryStore
from sync.bookkeeping import SyncBookkeeper
from sync.scheduler import SyncScheduler

logger = logging.getLogger("vulnwatch.api")

router = APIRouter(dependencies=[Depends(get_current_user)])


def _respond(integration: Integration, bookkeeper: Optional[SyncBookkeeper] = None) -> IntegrationResponse:
    history = []
    if bookkeeper is not None:
        history = [SyncRecordResponse.model_validate(r) for r in bookkeeper.history(integration.id)]
    return IntegrationResponse.model_validate({**vars(integration), "sync_history": history})


@limiter.limit("5/minute")
@router.post("/integrations/sync-due", response_model=list[ScheduledRunResponse])
def sync_due(
    request: Request,
    force: bool = False,
    admin: User = Depends(require_admin),
) -> list[ScheduledRunResponse]:
    """Fetch and reconcile every due integration now. force=true ignores syncEvery."""
    scheduler: SyncScheduler = request.app.state.scheduler
    runs = scheduler.run_due(force=force)
    logger.info("Manual sync pass by %s: %d run(s)", admin.username, len(runs))
    return [
        ScheduledRunResponse(
            integration_id=r.integration_id,
            name=r.name,
            ok=r.ok,
            error=r.error,
            result=SyncResultResponse.model_validate(r.result) if r.result else None,
        )
        for r in runs
    ]


@limiter.limit("10/minute")
@router.post("/integrations", response_model=IntegrationCreatedResponse, status_code=201)
def create_integration(
    request: Request,
    body: IntegrationCreate,
    user: User = Depends(get_current_user),
) -> IntegrationCreatedResponse:
    store: InventoryStore = request.app.state.inventory
    user_store: UserStore = request.app.state.user_store
    integration_id = store.create_integration(
        Integration(
            name=body.name,
            user_id=user.id,
            platform=body.platform,
            integration_uri=body.integration_uri,
            is_generic=body.is_generic,
            prompt=body.prompt,
            resource_type=body.resource_type.value,
            sync_every=body.sync_every,
            auth_type=body.auth_type.value,
            authentication=body.authentication,
        )
    )
    service_user_id, key_id, raw_key = user_store.create_service_user(integration_id, body.name)
    store.set_integration_credentials(integration_id, service_user_id, key_id)
    logger.info("Integration %d (%s) created by %s", integration_id, body.resource_type.value, user.username)
    return IntegrationCreatedResponse(integration=_respond(store.get_integration(integration_id)), api_key=raw_key)


@limiter.limit("60/minute")
@router.get("/integrations", response_model=PaginatedResponse[IntegrationResponse])
def list_integrations(
    request: Request,
    page: PageRequest = Depends(common.page_params),
    resource_type: Optional[ResourceTypeEnum] = Query(default=None, alias="resourceType"),
) -> PaginatedResponse[IntegrationResponse]:
    store: InventoryStore = request.app.state.inventory
    result = store.list_integrations(page, resource_type=resource_type.value if resource_type else None)
    return PaginatedResponse[IntegrationResponse].from_page(result, [_respond(i) for i in result.items])


@router.get("/integrations/{integration_id}", response_model=IntegrationResponse)
def get_integration(request: Request, integration_id: int) -> IntegrationResponse:
    store: InventoryStore = request.app.state.inventory
    integration = store.get_integration(integration_id)
    if integration is None:
        raise NotFoundError("Integration", integration_id)
    return _respond(integration, request.app.state.bookkeeper)


@limiter.limit("10/minute")
@router.delete("/integrations/{integration_id}", status_code=204)
def delete_integration(request: Request, integration_id: int, user: User = Depends(get_current_user)) -> Response:
    """Delete an integration and disable its service identity."""
    store: InventoryStore = request.app.state.inventory
    user_store: UserStore = request.app.state.user_store
    integration = store.get_integration(integration_id)
    if integration is None:
        raise NotFoundError("Integration", integration_id)
    common.require_owner(integration.user_id, user, "integration")
    store.delete_integration(integration_id)
    if integration.api_key_id is not None:
        user_store.revoke_api_key(integration.api_key_id)
    if integration.integration_user_id is not None:
        user_store.deactivate_user(integration.integration_user_id)
    return Response(status_code=204)
