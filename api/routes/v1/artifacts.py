"""
api/routes/v1/artifacts.py -- Artifact version chain routes for the VulnWatch REST API.

Routes (static prefixes registered before /artifacts/{artifact_id}):
  GET  /artifacts/versions/{wrapper_id}          -- versions, oldest first (paginated)
  POST /artifacts/versions/{wrapper_id}          -- append a version (wrapper owner)
  GET  /artifacts/wrappers/{wrapper_id}          -- wrapper with its latest version
  GET  /artifacts/wrappers/{wrapper_id}/history  -- latest back to version 1
  GET  /artifacts/{artifact_id}                  -- any version, latest or not
  PUT  /artifacts/{artifact_id}                  -- edit name/type/size (creator)

Content is immutable: a new download location or hash is a new version, never
an edit. PUT only touches descriptive metadata.
"""

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import ArtifactResponse, ArtifactUpdate, ArtifactWrapperResponse, PaginatedResponse
from api.routes.v1 import common
from auth.dependencies import get_current_user
from auth.models import User
from core.pagination import PageRequest
from inventory.errors import NotFoundError
from inventory.versions import VersionChain
from sync.inbound import ArtifactVersionInput

router = APIRouter(dependencies=[Depends(get_current_user)])


def _wrapper_or_404(versions: VersionChain, wrapper_id: int):
    wrapper = versions.get_wrapper(wrapper_id)
    if wrapper is None:
        raise NotFoundError("Artifact wrapper", wrapper_id)
    return wrapper


@limiter.limit("60/minute")
@router.get("/artifacts/versions/{wrapper_id}", response_model=PaginatedResponse[ArtifactResponse])
def list_versions(
    request: Request,
    wrapper_id: int,
    page: PageRequest = Depends(common.page_params),
) -> PaginatedResponse[ArtifactResponse]:
    versions: VersionChain = request.app.state.versions
    result = versions.list_versions(wrapper_id, page)
    return PaginatedResponse[ArtifactResponse].from_page(
        result, [ArtifactResponse.model_validate(a) for a in result.items]
    )


@limiter.limit("30/minute")
@router.post("/artifacts/versions/{wrapper_id}", response_model=ArtifactResponse, status_code=201)
def create_version(
    request: Request,
    wrapper_id: int,
    body: ArtifactVersionInput,
    user: User = Depends(get_current_user),
) -> ArtifactResponse:
    """Append a version. The response's prevVersionId names the version it supersedes."""
    versions: VersionChain = request.app.state.versions
    wrapper = _wrapper_or_404(versions, wrapper_id)
    common.require_owner(wrapper.user_id, user, "artifact")
    return ArtifactResponse.model_validate(versions.create_version(wrapper_id, body.to_domain(), user.id))


@router.get("/artifacts/wrappers/{wrapper_id}", response_model=ArtifactWrapperResponse)
def get_wrapper(request: Request, wrapper_id: int) -> ArtifactWrapperResponse:
    versions: VersionChain = request.app.state.versions
    return ArtifactWrapperResponse.model_validate(_wrapper_or_404(versions, wrapper_id))


@router.get("/artifacts/wrappers/{wrapper_id}/history", response_model=list[ArtifactResponse])
def wrapper_history(request: Request, wrapper_id: int) -> list[ArtifactResponse]:
    versions: VersionChain = request.app.state.versions
    return [ArtifactResponse.model_validate(a) for a in versions.history(wrapper_id)]


@router.get("/artifacts/{artifact_id}", response_model=ArtifactResponse)
def get_artifact(request: Request, artifact_id: int) -> ArtifactResponse:
    versions: VersionChain = request.app.state.versions
    artifact = versions.get_artifact(artifact_id)
    if artifact is None:
        raise NotFoundError("Artifact", artifact_id)
    return ArtifactResponse.model_validate(artifact)


@limiter.limit("30/minute")
@router.put("/artifacts/{artifact_id}", response_model=ArtifactResponse)
def update_artifact(
    request: Request,
    artifact_id: int,
    body: ArtifactUpdate,
    user: User = Depends(get_current_user),
) -> ArtifactResponse:
    versions: VersionChain = request.app.state.versions
    artifact = versions.get_artifact(artifact_id)
    if artifact is None:
        raise NotFoundError("Artifact", artifact_id)
    common.require_owner(artifact.user_id, user, "artifact")
    updated = versions.update_metadata(
        artifact_id,
        name=body.name,
        artifact_type=body.artifact_type.value if body.artifact_type else None,
        size=body.size,
    )
    return ArtifactResponse.model_validate(updated)
