"""
Match Routes
============

Endpoints:
- POST /match/batch - Match submitted invoices against submitted estimates
- POST /match/project/{project_id} - Match a project's stored invoices
- POST /match/links - Store accepted invoice line -> estimate line links
- GET /match/cache/stats - Result cache statistics
- DELETE /match/cache - Clear the result cache
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from estimate_match.api.dependencies import AppState, get_line_items_repository, get_state
from estimate_match.db.repositories import ProjectLineItemsRepository
from estimate_match.schemas.requests import (
    BatchMatchRequest,
    LinkEstimatesRequest,
    MatchOptions,
    ProjectMatchRequest,
)
from estimate_match.schemas.responses import BatchMatchResponse, LinkEstimatesResponse
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/batch",
    response_model=BatchMatchResponse,
    summary="Match invoice line items to estimate line items",
    responses={
        200: {"description": "Per-item results; success=false for an invalid batch"},
        422: {"description": "Request body failed validation"},
    },
)
async def match_batch(
    request: BatchMatchRequest,
    state: Annotated[AppState, Depends(get_state)],
) -> BatchMatchResponse:
    """Run the tiered matcher over the submitted invoices and estimates."""
    service = state.matching_service(request.user_id, request.project_id)
    options = request.options or MatchOptions.from_settings(state.settings)
    return await service.match_batch(
        request.invoices,
        request.estimates,
        request.project_id,
        options,
    )


@router.post(
    "/project/{project_id}",
    response_model=BatchMatchResponse,
    summary="Match a project's stored invoices",
    responses={503: {"description": "Database not configured"}},
)
async def match_project(
    project_id: str,
    request: ProjectMatchRequest,
    state: Annotated[AppState, Depends(get_state)],
    repository: Annotated[ProjectLineItemsRepository, Depends(get_line_items_repository)],
) -> BatchMatchResponse:
    """Load the project's invoices and estimates, then match them."""
    invoices = await repository.get_project_invoices(project_id)
    estimates = await repository.get_project_estimates(project_id)

    logger.info(
        "Matching stored project data",
        project_id=project_id,
        invoices=len(invoices),
        estimates=len(estimates),
    )

    service = state.matching_service(request.user_id, project_id)
    options = request.options or MatchOptions.from_settings(state.settings)
    return await service.match_batch(invoices, estimates, project_id, options)


@router.post(
    "/links",
    response_model=LinkEstimatesResponse,
    status_code=status.HTTP_200_OK,
    summary="Store accepted estimate links",
    responses={503: {"description": "Database not configured"}},
)
async def link_estimates(
    request: LinkEstimatesRequest,
    repository: Annotated[ProjectLineItemsRepository, Depends(get_line_items_repository)],
) -> LinkEstimatesResponse:
    """Write each link; unknown invoice line items are reported back."""
    response = LinkEstimatesResponse()
    for link in request.links:
        if await repository.link_estimate(link.invoice_line_item_id, link.estimate_line_item_id):
            response.updated += 1
        else:
            response.missing.append(link.invoice_line_item_id)
    return response


@router.get("/cache/stats", summary="Result cache statistics")
async def cache_stats(state: Annotated[AppState, Depends(get_state)]) -> dict[str, Any]:
    return await state.cache.stats()


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT, summary="Clear the result cache")
async def clear_cache(state: Annotated[AppState, Depends(get_state)]) -> None:
    await state.cache.clear()
    logger.info("Result cache cleared")
