"""
Pattern Routes
==============

Endpoints:
- POST /patterns/learn - Record a confirmed mapping
- GET /patterns/suggestions - Suggest trades for an invoice line
- POST /patterns/history/{history_id}/confirm - Confirm a recorded match
- POST /patterns/history/{history_id}/correct - Correct a recorded match
- GET /patterns/stats - Learning statistics
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from estimate_match.api.dependencies import AppState, get_optional_line_items_repository, get_state
from estimate_match.db.repositories import ProjectLineItemsRepository
from estimate_match.schemas.domain import LearningStats, MatchingHistoryEntry, PatternSuggestion
from estimate_match.schemas.requests import CorrectMatchRequest, LearnMappingRequest

router = APIRouter()


@router.post(
    "/learn",
    response_model=MatchingHistoryEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Record a confirmed mapping",
)
async def learn_mapping(
    request: LearnMappingRequest,
    state: Annotated[AppState, Depends(get_state)],
) -> MatchingHistoryEntry:
    service = state.pattern_service(request.user_id, request.project_id)
    return await service.learn_from_mapping(
        request.invoice_line_item_id,
        request.supplier_name,
        request.description,
        request.amount,
        request.trade_id,
        request.estimate_line_item_id,
    )


@router.get(
    "/suggestions",
    response_model=list[PatternSuggestion],
    summary="Suggest trades for an invoice line",
)
async def get_suggestions(
    state: Annotated[AppState, Depends(get_state)],
    line_items: Annotated[ProjectLineItemsRepository | None, Depends(get_optional_line_items_repository)],
    user_id: Annotated[str, Query(min_length=1)],
    supplier_name: str = "",
    description: str = "",
    amount: float | None = None,
    project_id: str | None = None,
) -> list[PatternSuggestion]:
    trade_names = None
    if project_id and line_items is not None:
        estimates = await line_items.get_project_estimates(project_id)
        trade_names = {e.trade_id: e.trade_name for e in estimates if e.trade_id}

    service = state.pattern_service(user_id, project_id)
    return await service.get_suggestions(supplier_name, description, amount, trade_names=trade_names)


@router.post(
    "/history/{history_id}/confirm",
    response_model=MatchingHistoryEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Confirm a recorded match",
    responses={404: {"description": "History entry not found"}},
)
async def confirm_match(
    history_id: str,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Query(min_length=1)],
    project_id: str | None = None,
) -> MatchingHistoryEntry:
    service = state.pattern_service(user_id, project_id)
    entry = await service.confirm_match(history_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"History entry {history_id} not found",
        )
    return entry


@router.post(
    "/history/{history_id}/correct",
    response_model=MatchingHistoryEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Correct a recorded match",
    responses={404: {"description": "History entry not found"}},
)
async def correct_match(
    history_id: str,
    request: CorrectMatchRequest,
    state: Annotated[AppState, Depends(get_state)],
) -> MatchingHistoryEntry:
    service = state.pattern_service(request.user_id, request.project_id)
    entry = await service.correct_match(history_id, request.trade_id, request.estimate_line_item_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"History entry {history_id} not found",
        )
    return entry


@router.get("/stats", response_model=LearningStats, summary="Learning statistics")
async def learning_stats(
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Query(min_length=1)],
    project_id: str | None = None,
) -> LearningStats:
    service = state.pattern_service(user_id, project_id)
    return await service.get_learning_stats()
