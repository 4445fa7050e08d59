"""
api/routes/v1/common.py -- Helpers shared by the item route modules.

The four item kinds (assets, vulnerabilities, device artifacts, remediations)
expose the same seven routes. Each route module declares its own handlers so
rate limits, tags and response models stay explicit; the bodies delegate here.

Ownership rule: only the creating user (or an admin) may modify or delete an
item. Integration uploads are accepted from the integration's service user,
its owner, or an admin.
"""

from typing import Optional

from fastapi import HTTPException, Query, Request

from api.models import ArtifactWrapperResponse, ErrorDetail, SyncResultResponse
from auth.models import ROLE_ADMIN, User
from core.config import get_settings
from core.pagination import MAX_PAGE_SIZE, PageRequest
from inventory.classification import ClassificationResolver
from inventory.errors import InvalidInputError, NotFoundError
from inventory.kinds import ResourceKind
from inventory.store import InventoryStore
from inventory.versions import VersionChain
from sync.inbound import to_inbound
from sync.reconciler import Reconciler

_settings = get_settings()


def page_params(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=_settings.default_page_size, ge=1, le=MAX_PAGE_SIZE, alias="pageSize"),
    search: str = Query(default="", max_length=200),
) -> PageRequest:
    """FastAPI dependency turning ?page=&pageSize=&search= into a PageRequest."""
    return PageRequest(page=page, page_size=min(page_size, _settings.max_page_size), search=search.strip())


def forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=403, detail=ErrorDetail(code="forbidden", message=message).model_dump())


def require_owner(owner_id: Optional[int], user: User, what: str) -> None:
    if user.role != ROLE_ADMIN and owner_id != user.id:
        raise forbidden(f"Only the creator of this {what} may modify it.")


def get_or_404(store: InventoryStore, kind: ResourceKind, item_id: int):
    item = store.get_item(kind, item_id)
    if item is None:
        raise NotFoundError(kind.resource_type, item_id)
    return item


def wrappers_for(request: Request, kind: ResourceKind, item_id: int) -> list[ArtifactWrapperResponse]:
    if not kind.artifact_fk:
        return []
    versions: VersionChain = request.app.state.versions
    return [ArtifactWrapperResponse.model_validate(w) for w in versions.wrappers_for_item(kind.artifact_fk, item_id)]


def create_item(request: Request, kind: ResourceKind, body, user: User) -> int:
    """Resolve groups, then insert the item and its artifact wrappers in one transaction."""
    store: InventoryStore = request.app.state.inventory
    resolver: ClassificationResolver = request.app.state.resolver
    versions: VersionChain = request.app.state.versions
    record = body.to_record()
    group_ids = [g.id for g in resolver.resolve_all(kind.classification_keys(record))]
    with store.transaction() as conn:
        item_id = store.create_item(kind, record, group_ids, user.id, conn=conn)
        artifacts = body.artifact_inputs()
        if kind.artifact_fk and artifacts:
            versions.create_wrappers_for_item(item_id, kind.artifact_fk, artifacts, user.id, conn=conn)
    return item_id


def update_item(request: Request, kind: ResourceKind, item_id: int, body, user: User) -> None:
    """Overwrite an item's fields. Artifact inputs on the body become new versions."""
    store: InventoryStore = request.app.state.inventory
    resolver: ClassificationResolver = request.app.state.resolver
    versions: VersionChain = request.app.state.versions
    existing = get_or_404(store, kind, item_id)
    require_owner(existing.user_id, user, kind.resource_type)
    record = body.to_record()
    group_ids = [g.id for g in resolver.resolve_all(kind.classification_keys(record))]
    with store.transaction() as conn:
        store.update_item(kind, item_id, record, group_ids, conn=conn)
        if kind.artifact_fk:
            versions.attach_versions(conn, item_id, kind.artifact_fk, body.artifact_inputs(), user.id)


def delete_item(request: Request, kind: ResourceKind, item_id: int, user: User) -> None:
    store: InventoryStore = request.app.state.inventory
    existing = get_or_404(store, kind, item_id)
    require_owner(existing.user_id, user, kind.resource_type)
    store.delete_item(kind, item_id)


def integration_upload(request: Request, kind: ResourceKind, body, user: User) -> SyncResultResponse:
    """Reconcile a pushed batch on behalf of an integration."""
    store: InventoryStore = request.app.state.inventory
    reconciler: Reconciler = request.app.state.reconciler
    integration = store.get_integration(body.integration_id)
    if integration is None:
        raise NotFoundError("Integration", body.integration_id)
    if user.role != ROLE_ADMIN and user.id not in (integration.integration_user_id, integration.user_id):
        raise forbidden("This identity may not upload for the given integration.")
    if integration.resource_type != kind.resource_type:
        raise InvalidInputError(f"Integration {integration.id} feeds {integration.resource_type}, not {kind.resource_type}")
    result = reconciler.reconcile(integration.id, [to_inbound(item) for item in body.items])
    return SyncResultResponse.model_validate(result)
