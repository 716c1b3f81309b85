"""Book project data models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


class BookStatus(str, Enum):
    """Lifecycle status of a book project."""

    PLANNING = "planning"
    GENERATING_ROADMAP = "generating_roadmap"
    ROADMAP_COMPLETED = "roadmap_completed"
    GENERATING_CONTENT = "generating_content"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    COMPLETED_WITH_GAPS = "completed_with_gaps"
    ERROR = "error"


class ModuleStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


class GenerationMode(str, Enum):
    """Tone of the generated text: formal ("stellar") or raw ("blackhole")."""

    STELLAR = "stellar"
    BLACKHOLE = "blackhole"


class Language(str, Enum):
    EN = "en"
    HI = "hi"
    MR = "mr"


class ComplexityLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class SessionPreferences(BaseModel):
    include_examples: bool = True
    include_practical_exercises: bool = False
    include_quizzes: bool = False


class BookSession(BaseModel):
    """What the user asked for: the input to every prompt."""

    goal: str
    language: Language = Language.EN
    target_audience: str | None = None
    complexity_level: ComplexityLevel | None = None
    preferences: SessionPreferences = Field(default_factory=SessionPreferences)
    reasoning: str | None = None
    generation_mode: GenerationMode = GenerationMode.STELLAR


class RoadmapModule(BaseModel):
    """One planned module of the roadmap."""

    id: str
    title: str
    objectives: list[str] = Field(default_factory=list)
    estimated_time: str = "1-2 hours"
    order: int  # 1-based


class BookRoadmap(BaseModel):
    """The ordered plan produced before any long-form content."""

    modules: list[RoadmapModule] = Field(default_factory=list)
    total_modules: int = 0
    estimated_reading_time: str = ""
    difficulty_level: ComplexityLevel = ComplexityLevel.INTERMEDIATE


class BookModule(BaseModel):
    """Generated content for one roadmap entry."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    roadmap_module_id: str
    title: str
    content: str = ""
    word_count: int = 0
    status: ModuleStatus = ModuleStatus.PENDING
    attempts: int = 0
    generated_at: datetime | None = None
    error: str | None = None


class BookProject(BaseModel):
    """The unit of work and persistence.

    Invariants checked on construction (and by ``check_invariants`` before
    every checkpoint):

    - once module slots exist for a roadmap there is exactly one per
      roadmap entry;
    - ``completed`` status requires every module to be completed.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    goal: str
    language: Language = Language.EN
    generation_mode: GenerationMode = GenerationMode.STELLAR
    category: str = "general"  # "programming", "science", "art", "business", "general"
    session: BookSession
    status: BookStatus = BookStatus.PLANNING
    progress: int = 0  # 0-100
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    roadmap: BookRoadmap | None = None
    modules: list[BookModule] = Field(default_factory=list)
    final_book: str | None = None
    total_words: int = 0
    provider: str | None = None
    model: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _validate_invariants(self) -> BookProject:
        self.check_invariants()
        return self

    def check_invariants(self) -> None:
        """Raise ValueError if the project breaks a structural invariant."""
        if self.roadmap is not None and self.modules:
            if len(self.modules) != len(self.roadmap.modules):
                raise ValueError(
                    f"Book {self.id} has {len(self.modules)} module slots "
                    f"for {len(self.roadmap.modules)} roadmap entries"
                )
        if self.status == BookStatus.COMPLETED:
            unfinished = [m.title for m in self.modules if m.status != ModuleStatus.COMPLETED]
            if unfinished:
                raise ValueError(
                    f"Book {self.id} cannot be completed with unfinished modules: "
                    f"{', '.join(unfinished)}"
                )

    def touch(self) -> None:
        self.updated_at = datetime.now()

    @property
    def completed_modules(self) -> list[BookModule]:
        return [m for m in self.modules if m.status == ModuleStatus.COMPLETED]

    @property
    def failed_modules(self) -> list[BookModule]:
        return [m for m in self.modules if m.status == ModuleStatus.ERROR]


def count_words(text: str) -> int:
    """Count whitespace-separated words in ``text``."""
    return len(text.split())
