"""Reading statistics for a finished book."""

import math
import re

from pydantic import BaseModel, Field

from pustakam.models.book import BookProject, ComplexityLevel

WORDS_PER_MINUTE = 250
MAX_TOPICS = 8

# Keyword counts decide the complexity estimate; the highest score wins
COMPLEXITY_KEYWORDS: dict[ComplexityLevel, list[str]] = {
    ComplexityLevel.BEGINNER: ["basic", "simple", "introduction", "getting started", "fundamentals"],
    ComplexityLevel.INTERMEDIATE: ["advanced", "complex", "implementation", "optimization", "architecture"],
    ComplexityLevel.ADVANCED: ["sophisticated", "enterprise", "scalable", "theoretical", "research"],
}

_LEADING_NUMBER = re.compile(r"^\d+\.\s*")


class BookAnalytics(BaseModel):
    total_words: int = 0
    reading_time_minutes: int = 0
    reading_time: str = "0 minutes"
    complexity: ComplexityLevel = ComplexityLevel.BEGINNER
    topics: list[str] = Field(default_factory=list)


def format_reading_time(minutes: int) -> str:
    if minutes > 60:
        return f"{minutes // 60} hours {minutes % 60} minutes"
    return f"{minutes} minutes"


def estimate_complexity(text: str) -> ComplexityLevel:
    content = text.lower()
    best, best_score = ComplexityLevel.BEGINNER, 0
    for level, keywords in COMPLEXITY_KEYWORDS.items():
        score = sum(content.count(keyword) for keyword in keywords)
        if score > best_score:
            best, best_score = level, score
    return best


def extract_topics(project: BookProject) -> list[str]:
    if project.roadmap is None:
        return []
    return [_LEADING_NUMBER.sub("", m.title).strip() for m in project.roadmap.modules][:MAX_TOPICS]


def analyze_book(project: BookProject) -> BookAnalytics:
    """Compute word count, reading time, complexity and topics."""
    if not project.final_book or not project.modules:
        return BookAnalytics()

    total_words = sum(m.word_count for m in project.modules)
    minutes = math.ceil(total_words / WORDS_PER_MINUTE)
    return BookAnalytics(
        total_words=total_words,
        reading_time_minutes=minutes,
        reading_time=format_reading_time(minutes),
        complexity=estimate_complexity(project.final_book),
        topics=extract_topics(project),
    )
