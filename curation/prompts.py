SCORE_PROMPT = """You are a content curator for a professional newsletter.

Score the following article for relevance on a scale of 0-10, where:
- 10 = Highly relevant, major news every reader should know
- 7-9 = Very relevant, significant development
- 5-6 = Somewhat relevant, interesting but not critical
- 3-4 = Low relevance, tangentially related
- 0-2 = Not relevant, off-topic

Consider impact, practical implications, source credibility, and novelty.

Title: {title}

Content: {content}

Respond with ONLY a single number from 0-10. No explanation needed."""

SUMMARY_PROMPT = """Write a concise, engaging 2-3 sentence summary of this article.
Focus on the key development, why it matters, and its practical implications.
Be clear and direct, avoid hype.

Title: {title}

Content: {content}

Write only the summary, no preamble or extra text."""

CATEGORY_PROMPT = """Categorize this article into 1-3 short topic labels
(for example: Research, Business, Policy, Tools, Security, Products).

Title: {title}

Content: {content}

Respond with ONLY the category names, separated by commas. Maximum 3 categories."""
