"""检索接口：混合检索与纯向量检索。"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from paperchat.api.v1.responses import bad_request, internal_error, success_response
from paperchat.api.v1.schemas import HybridSearchRequest, VectorSearchRequest
from paperchat.application.container import get_search_engine
from paperchat.application.hybrid_search import HybridSearchEngine, SearchValidationError
from paperchat.domain.models import HybridSearchHit

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_VECTOR_TOP_K = 50


def _engine() -> HybridSearchEngine:
    return get_search_engine()


def _hit_payload(hit: HybridSearchHit) -> dict[str, Any]:
    return {
        "paper": {
            "id": hit.paper_id,
            "title": hit.title,
            "authors": hit.authors,
            "abstract": hit.abstract,
            "tags": hit.tags,
        },
        "score": hit.score,
        "vector_score": hit.vector_score,
        "keyword_score": hit.keyword_score,
        "match_type": hit.match_type.value,
        "matched_chunks": [
            {"id": chunk.chunk_id, "content": chunk.content, "similarity": chunk.similarity, "chunk_index": chunk.chunk_index}
            for chunk in hit.matched_chunks
        ],
    }


@router.post("/search")
async def hybrid_search(body: HybridSearchRequest, engine: HybridSearchEngine = Depends(_engine)) -> Any:
    try:
        hits = await engine.search(
            body.query,
            top_k=body.top_k,
            paper_id=body.paper_id,
            threshold=body.threshold,
            vector_weight=body.vector_weight,
            keyword_weight=body.keyword_weight,
        )
    except SearchValidationError as exc:
        return bad_request(str(exc))
    except Exception as exc:
        logger.exception("hybrid search request failed", extra={"event": "search.request.failed", "error_type": type(exc).__name__})
        return internal_error("Search failed")
    return success_response(
        {"results": [_hit_payload(hit) for hit in hits], "query": body.query.strip(), "total": len(hits)}
    )


@router.post("/search/vector")
async def vector_search(body: VectorSearchRequest, engine: HybridSearchEngine = Depends(_engine)) -> Any:
    try:
        hits = await engine.vector_only_search(
            body.query,
            top_k=min(body.top_k, MAX_VECTOR_TOP_K),
            paper_id=body.paper_id,
            threshold=body.threshold,
        )
    except SearchValidationError as exc:
        return bad_request(str(exc))
    except Exception as exc:
        logger.exception("vector search request failed", extra={"event": "search.request.failed", "error_type": type(exc).__name__})
        return internal_error("Search failed")
    return success_response(
        {"results": [_hit_payload(hit) for hit in hits], "query": body.query.strip(), "total": len(hits)}
    )
