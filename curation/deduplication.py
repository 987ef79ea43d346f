"""Deduplication of candidate items by URL and by content similarity."""
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Sequence, Tuple

from curation.embeddings import cosine_similarity
from database.repositories.article_repo import ArticleRepository


@dataclass
class DuplicateCheck:
    """Outcome of a duplicate check."""
    is_duplicate: bool
    reason: Optional[str] = None
    similarity: float = 0.0
    matched_article_id: Optional[str] = None


class RecentEmbeddings:
    """Bounded window of a tenant's most recent article embeddings.

    Newest first; adding beyond `size` drops the oldest, so the similarity
    check stays O(window) however many articles a tenant accumulates.
    """

    def __init__(self, size: int, entries: Sequence[Tuple[str, List[float]]] = ()):
        self._entries: Deque[Tuple[str, List[float]]] = deque(entries, maxlen=size)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, article_id: str, embedding: List[float]):
        self._entries.appendleft((article_id, embedding))

    def best_match(self, embedding: Sequence[float]) -> Tuple[Optional[str], float]:
        """(article id, similarity) of the closest entry; (None, 0.0) when empty."""
        best_id, best = None, 0.0
        for article_id, other in self._entries:
            if len(other) != len(embedding):
                continue
            similarity = cosine_similarity(embedding, other)
            if best_id is None or similarity > best:
                best_id, best = article_id, similarity
        return best_id, best


class DeduplicationService:
    """Service for deciding whether a candidate is already known."""

    def __init__(self, article_repo: ArticleRepository, window_size: int):
        self.article_repo = article_repo
        self.window_size = window_size

    async def load_window(self, tenant_id: str) -> RecentEmbeddings:
        """Load the tenant's recent article embeddings."""
        articles = await self.article_repo.recent_by_tenant(tenant_id, self.window_size)
        return RecentEmbeddings(
            self.window_size,
            [(a["_id"], a["embedding"]) for a in articles]
        )

    async def check_url(self, tenant_id: str, url: str) -> DuplicateCheck:
        """Exact match on the normalized source URL (cheap, checked first)."""
        existing = await self.article_repo.find_by_source_url(tenant_id, url)
        if existing:
            return DuplicateCheck(True, reason="url", similarity=1.0, matched_article_id=existing["_id"])
        return DuplicateCheck(False)

    @staticmethod
    def check_similarity(
        window: RecentEmbeddings,
        embedding: Sequence[float],
        threshold: float
    ) -> DuplicateCheck:
        """Near-duplicate when the best similarity meets or exceeds `threshold`."""
        article_id, similarity = window.best_match(embedding)
        if article_id is not None and similarity >= threshold:
            return DuplicateCheck(True, reason="content", similarity=similarity, matched_article_id=article_id)
        return DuplicateCheck(False, similarity=similarity)
