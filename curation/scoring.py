"""Scoring service: relevance score, summary and topic labels."""
import logging
from abc import ABC, abstractmethod
from typing import List

from openai import AsyncOpenAI, OpenAIError

from curation.prompts import SCORE_PROMPT, SUMMARY_PROMPT, CATEGORY_PROMPT
from shared.errors import ScoringError

logger = logging.getLogger(__name__)

MAX_CATEGORIES = 3


def parse_score(text: str) -> float:
    """Parse a 0-10 score from a model answer."""
    try:
        score = float(text.strip())
    except ValueError:
        raise ScoringError(f"Invalid score received: {text!r}")
    if not 0 <= score <= 10:
        raise ScoringError(f"Score out of range: {score}")
    return score


def parse_categories(text: str) -> List[str]:
    """Split a comma separated answer into at most three labels."""
    categories = [c.strip().strip(".") for c in text.split(",")]
    return [c for c in categories if c][:MAX_CATEGORIES]


class ScoringService(ABC):
    """Language-model capability used to judge candidate items."""

    @abstractmethod
    async def score(self, title: str, content: str) -> float:
        """Relevance in [0, 10]. Raise ScoringError on failure."""

    @abstractmethod
    async def summarize(self, title: str, content: str) -> str:
        """Short summary. Raise ScoringError on failure."""

    @abstractmethod
    async def categorize(self, title: str, content: str) -> List[str]:
        """One to three topic labels. Raise ScoringError on failure."""


class OpenAIScoringService(ScoringService):

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=0,
            )
        except OpenAIError as e:
            raise ScoringError(str(e)) from e

        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not text:
            raise ScoringError("Empty response from model")
        return text

    async def score(self, title: str, content: str) -> float:
        text = await self._complete(SCORE_PROMPT.format(title=title, content=content[:1500]), max_tokens=10)
        return parse_score(text)

    async def summarize(self, title: str, content: str) -> str:
        return await self._complete(SUMMARY_PROMPT.format(title=title, content=content[:2000]), max_tokens=300)

    async def categorize(self, title: str, content: str) -> List[str]:
        text = await self._complete(CATEGORY_PROMPT.format(title=title, content=content[:1000]), max_tokens=50)
        categories = parse_categories(text)
        if not categories:
            raise ScoringError(f"No categories in response: {text!r}")
        return categories
