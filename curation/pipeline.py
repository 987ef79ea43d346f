"""Curation pipeline: fetch, filter, deduplicate, score and stage articles for review."""
import asyncio
import logging
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import ConnectionFailure

from api.models.source import SourceModel
from curation.deduplication import DeduplicationService, RecentEmbeddings
from curation.embeddings import EmbeddingService
from curation.scoring import ScoringService, MAX_CATEGORIES
from curation.sources import CandidateItem, SourceAdapter
from database.repositories.article_repo import ArticleRepository
from database.repositories.settings_repo import CurationSettings, TenantSettingsRepository
from database.repositories.source_repo import SourceRepository
from shared.config import Settings, settings as default_settings
from shared.context import JobContext
from shared.errors import DuplicateArticleError, JobCancelledError, PipelineConfigurationError
from shared.utils import calculate_exponential_backoff, ensure_utc, get_utc_now

logger = logging.getLogger(__name__)

# Progress bands: fetch 5-30, filter 35, per-item loop 35-95, completion 100
FETCH_START, FETCH_END = 5, 30
ITEMS_START, ITEMS_END = 35, 95


@dataclass
class CurationResult:
    """Aggregate counts of one curation run, partitioned by cause."""
    total_found: int = 0
    filtered_by_age: int = 0
    total: int = 0
    processed: int = 0
    curated: int = 0
    duplicates: int = 0
    low_score: int = 0
    errors: int = 0
    sources: int = 0
    failed_sources: int = 0
    error_messages: List[str] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "curated": self.curated,
            "duplicates": self.duplicates,
            "low_score": self.low_score,
            "errors": self.errors,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CurationPipeline:
    """Produces PENDING_REVIEW articles from a tenant's configured sources.

    Dependencies are constructed once at process start and injected; the
    pipeline keeps no state between runs.
    """

    def __init__(
        self,
        source_repo: SourceRepository,
        article_repo: ArticleRepository,
        settings_repo: TenantSettingsRepository,
        source_adapter: SourceAdapter,
        scoring_service: ScoringService,
        embedding_service: EmbeddingService,
        config: Settings = default_settings
    ):
        self.source_repo = source_repo
        self.article_repo = article_repo
        self.settings_repo = settings_repo
        self.source_adapter = source_adapter
        self.scoring_service = scoring_service
        self.embedding_service = embedding_service
        self.dedup = DeduplicationService(article_repo, config.similarity_window)
        self.fetch_concurrency = max(1, config.fetch_concurrency)
        self.max_retries = config.scoring_max_retries
        self.retry_base_delay = config.scoring_retry_base_delay
        self.default_score = config.default_score
        self.default_category = config.default_category

    async def run(self, ctx: JobContext) -> Dict[str, Any]:
        """Run all stages. On cancellation re-raises with the partial result attached."""
        result = CurationResult()
        try:
            await self._run(ctx, result)
        except JobCancelledError:
            logger.info(f"Curation job {ctx.job_id} cancelled after {result.processed} items")
            raise JobCancelledError(ctx.job_id, result.to_dict()) from None
        return result.to_dict()

    async def _run(self, ctx: JobContext, result: CurationResult):
        token = ctx.token

        # Stage 1: source selection
        token.raise_if_cancelled()
        tenant_settings = await self.settings_repo.get_curation_settings(ctx.tenant_id)
        source_ids = ctx.params.get("source_ids") or None
        sources = [
            SourceModel(**doc)
            for doc in await self.source_repo.get_active_sources(ctx.tenant_id, source_ids)
        ]
        if not sources:
            scope = "the selected sources" if source_ids else "this tenant"
            raise PipelineConfigurationError(f"No active sources configured for {scope}")

        result.sources = len(sources)
        description = f"{len(sources)} selected feed(s)" if source_ids else "all feeds"
        await ctx.report("start", 0, f"Starting curation pipeline for {description}...")

        # Stage 2: fetch & parse
        token.raise_if_cancelled()
        await ctx.report("fetch", FETCH_START, f"Fetching {len(sources)} feed(s)...")
        candidates = await self._fetch_all(ctx, sources, result)

        # Stage 3: age filter
        token.raise_if_cancelled()
        fresh = self._filter_by_age(candidates, tenant_settings.max_age_days)
        result.total_found = len(candidates)
        result.filtered_by_age = len(candidates) - len(fresh)
        result.total = len(fresh)
        await ctx.report(
            "filter", ITEMS_START,
            f"Found {len(candidates)} items, {len(fresh)} within {tenant_settings.max_age_days} days",
            total=result.total
        )

        # Stage 4: per-item decisions, strictly in source-then-feed order
        window = await self.dedup.load_window(ctx.tenant_id)
        for index, item in enumerate(fresh, start=1):
            token.raise_if_cancelled()
            outcome = await self._process_item(ctx, item, window, tenant_settings, result)
            result.processed = index
            percent = ITEMS_START + (ITEMS_END - ITEMS_START) * index / len(fresh)
            await ctx.report(
                "processing", percent,
                f"Article {index}/{len(fresh)} {outcome}: {item.title[:50]}",
                current=index, total=len(fresh), **result.counts()
            )

        # Stage 5: completion
        token.raise_if_cancelled()
        await ctx.report(
            "complete", 100,
            f"Curated {result.curated} of {result.total} items "
            f"({result.duplicates} duplicates, {result.low_score} low score, {result.errors} errors)",
            **result.counts()
        )
        logger.info(f"Curation job {ctx.job_id} finished: {result.counts()}")

    async def _fetch_all(
        self,
        ctx: JobContext,
        sources: List[SourceModel],
        result: CurationResult
    ) -> List[CandidateItem]:
        """Fetch sources concurrently; results are reassembled in source order."""
        semaphore = asyncio.Semaphore(self.fetch_concurrency)
        done = 0

        async def fetch_one(source: SourceModel) -> Optional[List[CandidateItem]]:
            nonlocal done
            async with semaphore:
                ctx.token.raise_if_cancelled()
                items = await self._fetch_source(ctx, source, result)
            done += 1
            percent = FETCH_START + (FETCH_END - FETCH_START) * done / len(sources)
            fetched = "failed" if items is None else f"{len(items)} items"
            await ctx.report("fetch", percent, f"Fetched {source.name}: {fetched}")
            return items

        outcomes = await asyncio.gather(*(fetch_one(s) for s in sources), return_exceptions=True)

        candidates: List[CandidateItem] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            candidates.extend(outcome or [])
        return candidates

    async def _fetch_source(
        self,
        ctx: JobContext,
        source: SourceModel,
        result: CurationResult
    ) -> Optional[List[CandidateItem]]:
        """Fetch one source. Returns None (and records why) when it fails."""
        name = source.name
        try:
            items = await ctx.token.run(self.source_adapter.fetch(source.url))
        except JobCancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to fetch source {name}: {e}")
            result.failed_sources += 1
            result.error_messages.append(f"Source {name}: {e}")
            await self._record_fetch(source.id, str(e))
            return None

        for item in items:
            item.source_id = source.id
        await self._record_fetch(source.id, None)
        return items

    async def _record_fetch(self, source_id: str, error: Optional[str]):
        try:
            await self.source_repo.record_fetch(source_id, error)
        except ConnectionFailure:
            raise
        except Exception as e:
            logger.warning(f"Could not record fetch status for source {source_id}: {e}")

    @staticmethod
    def _filter_by_age(items: List[CandidateItem], max_age_days: int) -> List[CandidateItem]:
        """Drop items published before the cutoff. Undated items are kept."""
        cutoff = get_utc_now() - timedelta(days=max_age_days)
        return [
            item for item in items
            if item.published_at is None or ensure_utc(item.published_at) >= cutoff
        ]

    async def _process_item(
        self,
        ctx: JobContext,
        item: CandidateItem,
        window: RecentEmbeddings,
        tenant_settings: CurationSettings,
        result: CurationResult
    ) -> str:
        """Decide one candidate. Returns a short outcome label for progress."""
        token = ctx.token
        try:
            if (await token.run(self.dedup.check_url(ctx.tenant_id, item.source_url))).is_duplicate:
                result.duplicates += 1
                return "duplicate"

            # No fallback vector: a wrong embedding would corrupt deduplication
            embedding = await token.run(
                self.embedding_service.embed(f"{item.title}\n\n{item.raw_content}")
            )

            similar = self.dedup.check_similarity(window, embedding, tenant_settings.similarity_threshold)
            if similar.is_duplicate:
                logger.info(
                    f"Near-duplicate ({similar.similarity:.3f}) of {similar.matched_article_id}: {item.source_url}"
                )
                result.duplicates += 1
                return "duplicate"

            score = await self._score(ctx, item)
            if score < tenant_settings.relevance_threshold:
                result.low_score += 1
                return f"low score ({score:g})"

            summary, categories = await self._describe(ctx, item)

            try:
                article = await self.article_repo.create_article(
                    tenant_id=ctx.tenant_id,
                    source_url=item.source_url,
                    title=item.title,
                    content=item.raw_content,
                    summary=summary,
                    relevance_score=score,
                    categories=categories,
                    embedding=embedding,
                    author=item.author,
                    source_id=item.source_id,
                    published_at=item.published_at
                )
            except DuplicateArticleError:
                result.duplicates += 1
                return "duplicate"

            window.add(article["_id"], embedding)
            result.curated += 1
            return f"curated ({score:g})"

        except (JobCancelledError, ConnectionFailure):
            raise
        except Exception as e:
            logger.error(f"Error processing {item.source_url}: {e}")
            result.errors += 1
            result.error_messages.append(f'Error processing "{item.title[:80]}": {e}')
            return "error"

    async def _score(self, ctx: JobContext, item: CandidateItem) -> float:
        """Score with retries and exponential backoff, then fall back to a neutral score."""
        for attempt in range(self.max_retries + 1):
            try:
                return await ctx.token.run(self.scoring_service.score(item.title, item.raw_content))
            except JobCancelledError:
                raise
            except Exception as e:
                if attempt >= self.max_retries:
                    logger.warning(
                        f"Scoring failed after {attempt + 1} attempts for {item.source_url}: {e}; "
                        f"using default score {self.default_score}"
                    )
                    break
                delay = calculate_exponential_backoff(attempt, self.retry_base_delay)
                logger.info(f"Scoring failed for {item.source_url} ({e}), retrying in {delay}s")
                await ctx.token.sleep(delay)
        return self.default_score

    async def _describe(self, ctx: JobContext, item: CandidateItem) -> Tuple[str, List[str]]:
        """Summary and categories; failures fall back to defaults instead of dropping the item."""
        try:
            summary = await ctx.token.run(self.scoring_service.summarize(item.title, item.raw_content))
        except JobCancelledError:
            raise
        except Exception as e:
            logger.warning(f"Summarization failed for {item.source_url}: {e}")
            summary = ""

        try:
            categories = await ctx.token.run(self.scoring_service.categorize(item.title, item.raw_content))
            categories = list(categories)[:MAX_CATEGORIES] or [self.default_category]
        except JobCancelledError:
            raise
        except Exception as e:
            logger.warning(f"Categorization failed for {item.source_url}: {e}")
            categories = [self.default_category]

        return summary, categories
