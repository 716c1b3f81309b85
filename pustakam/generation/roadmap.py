"""Turning a model's roadmap answer into a BookRoadmap."""

import json
import logging
import re

from pustakam.errors import RoadmapParseError
from pustakam.models.book import BookRoadmap, BookSession, ComplexityLevel, RoadmapModule

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def extract_json_object(text: str) -> str:
    """Return the text between the first ``{`` and the last ``}``.

    Raises:
        RoadmapParseError: If there is no such span.
    """
    cleaned = _FENCE.sub("", text.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise RoadmapParseError("Invalid response format: no JSON object found")
    return cleaned[start : end + 1]


def _difficulty(value: object, session: BookSession) -> ComplexityLevel:
    if isinstance(value, str) and value.strip().lower() in {c.value for c in ComplexityLevel}:
        return ComplexityLevel(value.strip().lower())
    return session.complexity_level or ComplexityLevel.INTERMEDIATE


def parse_roadmap_response(text: str, session: BookSession, min_modules: int = 1) -> BookRoadmap:
    """Parse a roadmap answer.

    Module ids are assigned by position (``module_1``, ``module_2``, ...),
    missing titles and objectives get placeholders and absent totals are
    derived from the module list.

    Args:
        text: Raw model output, possibly wrapped in a markdown fence.
        session: Session the roadmap was requested for.
        min_modules: Fewest modules accepted.

    Returns:
        The parsed roadmap.

    Raises:
        RoadmapParseError: If no usable module list can be read.
    """
    try:
        data = json.loads(extract_json_object(text))
    except json.JSONDecodeError as exc:
        raise RoadmapParseError(f"Roadmap JSON could not be decoded: {exc}") from exc

    raw_modules = data.get("modules") if isinstance(data, dict) else None
    if not isinstance(raw_modules, list):
        raise RoadmapParseError("Invalid roadmap: missing modules array")

    modules: list[RoadmapModule] = []
    for i, raw in enumerate(raw_modules):
        raw = raw if isinstance(raw, dict) else {}
        title = str(raw.get("title") or "").strip() or f"Module {i + 1}"
        objectives = raw.get("objectives")
        if isinstance(objectives, list) and objectives:
            objectives = [str(o) for o in objectives]
        else:
            objectives = [f"Learn {title}"]
        modules.append(
            RoadmapModule(
                id=f"module_{i + 1}",
                title=title,
                objectives=objectives,
                estimated_time=str(raw.get("estimatedTime") or raw.get("estimated_time") or "1-2 hours"),
                order=i + 1,
            )
        )

    if len(modules) < min_modules:
        raise RoadmapParseError(
            f"Roadmap has {len(modules)} modules, at least {min_modules} are required"
        )

    reading_time = data.get("estimatedReadingTime") or data.get("estimated_reading_time")
    roadmap = BookRoadmap(
        modules=modules,
        total_modules=len(modules),
        estimated_reading_time=str(reading_time or f"{len(modules) * 2} hours"),
        difficulty_level=_difficulty(data.get("difficultyLevel") or data.get("difficulty_level"), session),
    )
    logger.info("Parsed roadmap with %d modules", roadmap.total_modules)
    return roadmap
