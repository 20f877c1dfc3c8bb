"""仓储实现：论文/分块读取、向量与关键词匹配、问卷与投票写入。"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from sqlalchemy import String, Select, cast, func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from paperchat.domain.models import ChunkMatch
from paperchat.infra.db.models import PaperChunkORM, PaperORM, PaperSummaryORM, SurveyORM, VoteORM, utcnow

PAPER_SORTS = {
    "newest": (PaperORM.created_at.desc(), PaperORM.id),
    "votes": (PaperORM.vote_count.desc(), PaperORM.created_at.desc()),
    "surveys": (PaperORM.survey_count.desc(), PaperORM.created_at.desc()),
}

VOTE_TYPES = ("up", "down")


@dataclass(slots=True)
class PaperPage:
    items: list[PaperORM]
    total: int


def _like(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def cosine_similarities(query: Sequence[float], matrix: Sequence[Sequence[float]]) -> np.ndarray:
    """返回 query 与矩阵每一行的余弦相似度，零向量得 0。"""
    q = np.asarray(query, dtype=float)
    m = np.asarray(matrix, dtype=float)
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


class PaperRepository:
    """论文仓储；所有读取都排除软删除的论文。"""
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _alive() -> Select[tuple[PaperORM]]:
        return select(PaperORM).where(PaperORM.deleted_at.is_(None))

    def get_paper(self, paper_id: str) -> PaperORM | None:
        with self._session_factory() as db:
            return db.execute(self._alive().where(PaperORM.id == paper_id)).scalars().first()

    def get_papers_by_ids(self, paper_ids: Sequence[str]) -> list[PaperORM]:
        if not paper_ids:
            return []
        with self._session_factory() as db:
            return list(db.execute(self._alive().where(PaperORM.id.in_(list(paper_ids)))).scalars())

    def list_chunks(self, paper_id: str, limit: int | None = None) -> list[PaperChunkORM]:
        stmt = select(PaperChunkORM).where(PaperChunkORM.paper_id == paper_id).order_by(PaperChunkORM.chunk_index)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session_factory() as db:
            return list(db.execute(stmt).scalars())

    def match_chunks(
        self,
        query_embedding: Sequence[float],
        *,
        threshold: float,
        count: int,
        paper_id: str | None = None,
        exclude_paper_ids: Sequence[str] = (),
    ) -> list[ChunkMatch]:
        """相似度不低于 threshold 的分块，按相似度降序取前 count 个。"""
        stmt = (
            select(PaperChunkORM)
            .join(PaperORM, PaperORM.id == PaperChunkORM.paper_id)
            .where(PaperORM.deleted_at.is_(None), PaperChunkORM.embedding.is_not(None))
        )
        if paper_id:
            stmt = stmt.where(PaperChunkORM.paper_id == paper_id)
        if exclude_paper_ids:
            stmt = stmt.where(PaperChunkORM.paper_id.not_in(list(exclude_paper_ids)))
        with self._session_factory() as db:
            rows = list(db.execute(stmt).scalars())
        dim = len(query_embedding)
        rows = [row for row in rows if row.embedding and len(row.embedding) == dim]
        if not rows or count <= 0:
            return []
        scores = cosine_similarities(query_embedding, [row.embedding for row in rows])
        order = np.argsort(-scores, kind="stable")
        matches: list[ChunkMatch] = []
        for idx in order:
            score = float(scores[idx])
            if score < threshold:
                break
            row = rows[int(idx)]
            matches.append(
                ChunkMatch(
                    chunk_id=str(row.id),
                    paper_id=row.paper_id,
                    content=row.content,
                    similarity=score,
                    chunk_index=row.chunk_index,
                )
            )
            if len(matches) >= count:
                break
        return matches

    def keyword_search(self, query: str, limit: int, paper_id: str | None = None) -> list[PaperORM]:
        """标题/摘要/作者不区分大小写的子串匹配，按入库时间倒序。"""
        pattern = _like(query.strip())
        base = self._alive() if paper_id is None else self._alive().where(PaperORM.id == paper_id)
        stmt = (
            base.where(
                or_(
                    PaperORM.title.ilike(pattern, escape="\\"),
                    PaperORM.abstract.ilike(pattern, escape="\\"),
                    cast(PaperORM.authors, String).ilike(pattern, escape="\\"),
                )
            )
            .order_by(PaperORM.created_at.desc(), PaperORM.id)
            .limit(limit)
        )
        with self._session_factory() as db:
            return list(db.execute(stmt).scalars())

    def list_papers(
        self,
        *,
        search: str | None = None,
        tags: Sequence[str] = (),
        sort: str = "newest",
        offset: int = 0,
        limit: int = 20,
    ) -> PaperPage:
        if sort not in PAPER_SORTS:
            raise ValueError(f"unsupported sort: {sort}")
        stmt = self._alive()
        if search:
            pattern = _like(search)
            stmt = stmt.where(
                or_(
                    PaperORM.title.ilike(pattern, escape="\\"),
                    cast(PaperORM.authors, String).ilike(pattern, escape="\\"),
                )
            )
        if tags:
            stmt = stmt.where(or_(*(cast(PaperORM.tags, String).like(_like(f'"{tag}"'), escape="\\") for tag in tags)))
        count_stmt = select(func.count()).select_from(stmt.subquery())
        with self._session_factory() as db:
            total = int(db.execute(count_stmt).scalar_one())
            items = list(db.execute(stmt.order_by(*PAPER_SORTS[sort]).offset(offset).limit(limit)).scalars())
        return PaperPage(items=items, total=total)

    def list_tags(self) -> list[dict[str, Any]]:
        """按出现次数降序汇总标签。"""
        with self._session_factory() as db:
            rows = db.execute(select(PaperORM.tags).where(PaperORM.deleted_at.is_(None))).scalars()
            counts: dict[str, int] = {}
            for tags in rows:
                for tag in tags or []:
                    counts[tag] = counts.get(tag, 0) + 1
        return [{"name": name, "count": count} for name, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]

    def popular_papers(self, limit: int, exclude_ids: Sequence[str] = ()) -> list[PaperORM]:
        stmt = self._alive().order_by(PaperORM.vote_count.desc(), PaperORM.survey_count.desc(), PaperORM.created_at.desc())
        if exclude_ids:
            stmt = stmt.where(PaperORM.id.not_in(list(exclude_ids)))
        with self._session_factory() as db:
            return list(db.execute(stmt.limit(limit)).scalars())

    def surveyed_paper_ids(self, session_id: str) -> list[str]:
        stmt = select(SurveyORM.paper_id).where(SurveyORM.session_id == session_id).distinct()
        with self._session_factory() as db:
            return list(db.execute(stmt).scalars())

    def add_survey(self, *, paper_id: str, session_id: str, responses: dict[str, Any]) -> SurveyORM:
        """写入问卷并累加 survey_count；论文不存在时抛 KeyError。"""
        with self._session_factory.begin() as db:
            paper = db.get(PaperORM, paper_id)
            if paper is None or paper.deleted_at is not None:
                raise KeyError(f"paper not found: {paper_id}")
            survey = SurveyORM(paper_id=paper_id, session_id=session_id, responses=responses)
            db.add(survey)
            paper.survey_count = (paper.survey_count or 0) + 1
            db.flush()
            return survey

    def upsert_vote(self, *, paper_id: str, session_id: str, vote_type: str) -> int:
        """同一会话重复投票会覆盖旧值；返回最新的 up 票数。"""
        if vote_type not in VOTE_TYPES:
            raise ValueError('vote_type must be "up" or "down"')
        with self._session_factory.begin() as db:
            paper = db.get(PaperORM, paper_id)
            if paper is None or paper.deleted_at is not None:
                raise KeyError(f"paper not found: {paper_id}")
            vote = db.execute(
                select(VoteORM).where(VoteORM.paper_id == paper_id, VoteORM.session_id == session_id)
            ).scalars().first()
            if vote is None:
                db.add(VoteORM(paper_id=paper_id, session_id=session_id, vote_type=vote_type))
            else:
                vote.vote_type = vote_type
            db.flush()
            paper.vote_count = int(
                db.execute(
                    select(func.count()).where(VoteORM.paper_id == paper_id, VoteORM.vote_type == "up")
                ).scalar_one()
            )
            return paper.vote_count

    def get_vote(self, *, paper_id: str, session_id: str) -> str | None:
        stmt = select(VoteORM.vote_type).where(VoteORM.paper_id == paper_id, VoteORM.session_id == session_id)
        with self._session_factory() as db:
            return db.execute(stmt).scalars().first()

    def get_summary(self, paper_id: str, language: str) -> PaperSummaryORM | None:
        stmt = select(PaperSummaryORM).where(PaperSummaryORM.paper_id == paper_id, PaperSummaryORM.language == language)
        with self._session_factory() as db:
            return db.execute(stmt).scalars().first()

    def save_summary(
        self,
        *,
        paper_id: str,
        language: str,
        summary: str,
        key_points: list[str],
        methodology: str | None = None,
        results: str | None = None,
        conclusion: str | None = None,
    ) -> PaperSummaryORM:
        """同一论文同一语言只保留最新一份摘要。"""
        with self._session_factory.begin() as db:
            row = db.execute(
                select(PaperSummaryORM).where(PaperSummaryORM.paper_id == paper_id, PaperSummaryORM.language == language)
            ).scalars().first()
            if row is None:
                row = PaperSummaryORM(paper_id=paper_id, language=language)
                db.add(row)
            row.summary = summary
            row.key_points = list(key_points)
            row.methodology = methodology
            row.results = results
            row.conclusion = conclusion
            db.flush()
            return row

    def upsert_paper(
        self,
        *,
        title: str,
        authors: list[str],
        abstract: str | None = None,
        tags: list[str] | None = None,
        file_url: str | None = None,
        file_type: str | None = None,
        paper_id: str | None = None,
    ) -> PaperORM:
        with self._session_factory.begin() as db:
            paper = db.get(PaperORM, paper_id) if paper_id else None
            if paper is None:
                paper = PaperORM(id=paper_id or str(uuid.uuid4()))
                db.add(paper)
            paper.title = title
            paper.authors = list(authors)
            paper.abstract = abstract
            paper.tags = list(tags or [])
            paper.file_url = file_url
            paper.file_type = file_type
            paper.updated_at = utcnow()
            db.flush()
            return paper

    def replace_chunks(self, paper_id: str, chunks: Sequence[tuple[str, list[float] | None]]) -> int:
        """删除论文旧分块后按顺序写入新分块，单事务完成。"""
        with self._session_factory.begin() as db:
            for row in db.execute(select(PaperChunkORM).where(PaperChunkORM.paper_id == paper_id)).scalars():
                db.delete(row)
            db.flush()
            for index, (content, embedding) in enumerate(chunks):
                db.add(PaperChunkORM(paper_id=paper_id, chunk_index=index, content=content, embedding=embedding))
        return len(chunks)
