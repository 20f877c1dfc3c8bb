"""论文接口：列表/详情、标签、相似论文、摘要、推荐、问卷与投票。"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from paperchat.api.v1.responses import (
    bad_request,
    internal_error,
    not_found,
    pagination_meta,
    pagination_params,
    success_response,
)
from paperchat.api.v1.schemas import SurveyRequest, VoteRequest
from paperchat.application.container import get_recommender, get_repository, get_summarizer
from paperchat.application.recommendations import PaperRecommender
from paperchat.application.summaries import PaperContentMissingError, PaperNotFoundError, PaperSummarizer
from paperchat.infra.db.models import PaperORM
from paperchat.infra.db.repository import PaperRepository

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 20


def _repository() -> PaperRepository:
    return get_repository()


def _recommender() -> PaperRecommender:
    return get_recommender()


def _summarizer() -> PaperSummarizer:
    return get_summarizer()


def _paper_payload(paper: PaperORM) -> dict[str, Any]:
    return {
        "id": paper.id,
        "title": paper.title,
        "authors": list(paper.authors or []),
        "abstract": paper.abstract,
        "file_url": paper.file_url,
        "file_type": paper.file_type,
        "tags": list(paper.tags or []),
        "vote_count": paper.vote_count or 0,
        "survey_count": paper.survey_count or 0,
        "created_at": paper.created_at,
    }


@router.get("/papers")
async def list_papers(
    search: str | None = None,
    tags: str | None = None,
    sort: str = "newest",
    page: int | None = None,
    limit: int | None = None,
    repository: PaperRepository = Depends(_repository),
) -> Any:
    page, limit, offset = pagination_params(page, limit)
    tag_list = [tag.strip() for tag in (tags or "").split(",") if tag.strip()]
    try:
        result = await asyncio.to_thread(
            repository.list_papers, search=search, tags=tag_list, sort=sort, offset=offset, limit=limit
        )
    except ValueError as exc:
        return bad_request(str(exc))
    return success_response([_paper_payload(p) for p in result.items], meta=pagination_meta(page, limit, result.total))


@router.get("/papers/{paper_id}")
async def get_paper(paper_id: str, repository: PaperRepository = Depends(_repository)) -> Any:
    paper = await asyncio.to_thread(repository.get_paper, paper_id)
    if paper is None:
        return not_found(f"paper not found: {paper_id}")
    return success_response(_paper_payload(paper))


@router.get("/papers/{paper_id}/similar")
async def similar_papers(
    paper_id: str,
    top_k: int = Query(default=5, ge=1, le=MAX_RECOMMENDATIONS),
    threshold: float = Query(default=0.7, ge=0.0, le=1.0),
    repository: PaperRepository = Depends(_repository),
    recommender: PaperRecommender = Depends(_recommender),
) -> Any:
    if await asyncio.to_thread(repository.get_paper, paper_id) is None:
        return not_found(f"paper not found: {paper_id}")
    results = await recommender.similar_papers(paper_id, top_k=top_k, threshold=threshold)
    return success_response([item.to_dict() for item in results])


@router.get("/papers/{paper_id}/summary")
async def paper_summary(
    paper_id: str,
    language: str = Query(default="en", min_length=2, max_length=8),
    summarizer: PaperSummarizer = Depends(_summarizer),
) -> Any:
    try:
        summary = await summarizer.summarize(paper_id, language=language)
    except PaperNotFoundError:
        return not_found(f"paper not found: {paper_id}")
    except PaperContentMissingError:
        return not_found("paper content not found, please ensure the paper has been processed")
    except Exception as exc:
        logger.exception(
            "paper summary failed",
            extra={"event": "summary.failed", "paper_id": paper_id, "error_type": type(exc).__name__},
        )
        return internal_error("failed to generate summary")
    return success_response(summary.to_dict())


@router.post("/papers/{paper_id}/survey")
async def submit_survey(paper_id: str, body: SurveyRequest, repository: PaperRepository = Depends(_repository)) -> Any:
    if not body.session_id.strip():
        return bad_request("session_id is required")
    try:
        survey = await asyncio.to_thread(
            repository.add_survey, paper_id=paper_id, session_id=body.session_id, responses=body.responses
        )
    except KeyError as exc:
        return not_found(str(exc.args[0]) if exc.args else "paper not found")
    logger.info("survey submitted", extra={"event": "survey.submitted", "paper_id": paper_id, "session_id": body.session_id})
    return success_response({"id": survey.id, "paper_id": paper_id}, status_code=201)


@router.post("/papers/{paper_id}/vote")
async def vote(paper_id: str, body: VoteRequest, repository: PaperRepository = Depends(_repository)) -> Any:
    if not body.session_id.strip():
        return bad_request("session_id is required")
    try:
        vote_count = await asyncio.to_thread(
            repository.upsert_vote, paper_id=paper_id, session_id=body.session_id, vote_type=body.vote_type
        )
    except KeyError as exc:
        return not_found(str(exc.args[0]) if exc.args else "paper not found")
    except ValueError as exc:
        return bad_request(str(exc))
    return success_response({"paper_id": paper_id, "vote_type": body.vote_type, "vote_count": vote_count})


@router.get("/tags")
async def list_tags(repository: PaperRepository = Depends(_repository)) -> Any:
    return success_response(await asyncio.to_thread(repository.list_tags))


@router.get("/recommendations")
async def recommendations(
    session_id: str = "",
    top_k: int = Query(default=5, ge=1, le=MAX_RECOMMENDATIONS),
    recommender: PaperRecommender = Depends(_recommender),
) -> Any:
    """有问卷记录时按兴趣推荐，否则返回热门论文。"""
    if not session_id.strip():
        return bad_request("session_id is required")
    results = await recommender.from_survey(session_id, top_k=top_k)
    source = "survey"
    if not results:
        try:
            results = await recommender.popular(top_k=top_k)
        except Exception as exc:
            logger.exception("popular papers lookup failed", extra={"event": "recommend.popular.failed", "error_type": type(exc).__name__})
            return internal_error()
        source = "popular"
    return success_response({"source": source, "papers": [item.to_dict() for item in results]})
