"""Query endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from grounded_rag.api.dependencies import get_orchestrator
from grounded_rag.exceptions import PipelineCancelled, PipelineTimeout
from grounded_rag.models.schemas import QueryRequest, QueryResponse
from grounded_rag.pipeline.orchestrator import PipelineOrchestrator

router = APIRouter()


@router.post("/query", response_model=QueryResponse)
async def query(
    request: QueryRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> QueryResponse:
    try:
        answer = await orchestrator.run(
            request.to_query(),
            top_k=request.top_k,
            timeout_seconds=request.timeout_seconds,
        )
    except PipelineTimeout as e:
        raise HTTPException(status_code=504, detail=str(e))
    except PipelineCancelled as e:
        raise HTTPException(status_code=499, detail=str(e))
    return QueryResponse.from_answer(answer)
