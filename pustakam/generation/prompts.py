"""Prompt construction for roadmaps, modules and the assembled book.

Three personas share the same contract: a roadmap prompt asking for JSON
only and a module prompt asking for long-form markdown with a fixed
heading layout. Builders are pure; they never call out or mutate input.
"""

from enum import Enum
from typing import Protocol

from pustakam.models.book import (
    BookModule,
    BookRoadmap,
    BookSession,
    GenerationMode,
    Language,
    RoadmapModule,
)

DEFAULT_CONTEXT_MODULES = 2
DEFAULT_CONTEXT_CHARS = 300
MIN_ROADMAP_MODULES = 10
GLOSSARY_SOURCE_CHARS = 12000


class Persona(str, Enum):
    ACADEMIC = "academic"
    STREET = "street"
    DESI = "desi"


class PromptBuilder(Protocol):
    """Builds the two prompts every generation run needs."""

    def build_roadmap_prompt(self, session: BookSession) -> str: ...

    def build_module_prompt(
        self,
        session: BookSession,
        module_spec: RoadmapModule,
        prior_modules: list[BookModule],
        is_first: bool,
        index: int,
        total: int,
    ) -> str: ...


def persona_for(session: BookSession) -> Persona:
    """Pick the persona matching the session's mode and language."""
    if session.generation_mode == GenerationMode.BLACKHOLE:
        if session.language in (Language.HI, Language.MR):
            return Persona.DESI
        return Persona.STREET
    return Persona.ACADEMIC


def _require_goal(session: BookSession) -> str:
    goal = session.goal.strip()
    if not goal:
        raise ValueError("Learning goal must not be empty")
    return goal


def _complexity(session: BookSession) -> str:
    return session.complexity_level.value if session.complexity_level else "intermediate"


class _BasePromptBuilder:
    """Shared context handling for the concrete builders."""

    def __init__(
        self,
        context_modules: int = DEFAULT_CONTEXT_MODULES,
        context_chars: int = DEFAULT_CONTEXT_CHARS,
        min_modules: int = MIN_ROADMAP_MODULES,
    ) -> None:
        self.context_modules = context_modules
        self.context_chars = context_chars
        self.min_modules = min_modules

    def context_excerpts(self, prior_modules: list[BookModule], is_first: bool) -> list[tuple[str, str]]:
        """Return (title, excerpt) pairs for the most recent prior modules."""
        if is_first or not prior_modules or self.context_modules <= 0:
            return []
        recent = prior_modules[-self.context_modules:]
        return [(m.title, m.content[: self.context_chars]) for m in recent]


class AcademicPromptBuilder(_BasePromptBuilder):
    """Formal textbook voice, used for the ``stellar`` mode."""

    def build_roadmap_prompt(self, session: BookSession) -> str:
        goal = _require_goal(session)
        reasoning = (
            f"\n- Reasoning/Motivation for the book: {session.reasoning}" if session.reasoning else ""
        )
        return f"""Create a comprehensive learning roadmap for: "{goal}"

Requirements:
- Generate a suitable number of modules, with a minimum of {self.min_modules}. The final number should be based on the complexity and scope of the learning goal.
- Each module should have a clear title and 3-5 specific learning objectives
- Estimate realistic reading/study time for each module
- Target audience: {session.target_audience or "general learners"}
- Complexity: {_complexity(session)}{reasoning}

Return ONLY valid JSON:
{{
  "modules": [
    {{
      "title": "Module Title",
      "objectives": ["Objective 1", "Objective 2"],
      "estimatedTime": "2-3 hours"
    }}
  ],
  "estimatedReadingTime": "20-25 hours",
  "difficultyLevel": "{_complexity(session)}"
}}"""

    def build_module_prompt(
        self,
        session: BookSession,
        module_spec: RoadmapModule,
        prior_modules: list[BookModule],
        is_first: bool,
        index: int,
        total: int,
    ) -> str:
        goal = _require_goal(session)
        excerpts = self.context_excerpts(prior_modules, is_first)
        context = ""
        if excerpts:
            context = "\n\nPREVIOUS MODULES CONTEXT:\n" + "\n\n".join(
                f"{title}: {excerpt}..." for title, excerpt in excerpts
            )
        reasoning = f"\n- Book's Core Reasoning: {session.reasoning}" if session.reasoning else ""
        prefs = session.preferences

        requirements = [
            "- Write at least 2500 words (2500-4000)",
            "- Provide an introduction to the subject" if is_first else "- Build upon previous content",
            "- Use ## and ### markdown headers",
            "- Include bullet points and lists",
        ]
        if prefs.include_examples:
            requirements.append("- Include practical examples")
        if prefs.include_practical_exercises:
            requirements.append("- Add exercises at the end")
        if prefs.include_quizzes:
            requirements.append("- Close with a short self-check quiz")

        structure = [
            f"## {module_spec.title}",
            "### Introduction",
            "### Core Concepts",
            "### Practical Application",
        ]
        if prefs.include_practical_exercises:
            structure.append("### Practice Exercises")
        structure.append("### Key Takeaways")

        newline = "\n"
        return f"""Generate a comprehensive chapter for: "{module_spec.title}"

CONTEXT:
- Learning Goal: {goal}
- Module {index} of {total}
- Objectives: {", ".join(module_spec.objectives)}
- Target Audience: {session.target_audience or "general learners"}
- Complexity: {_complexity(session)}{reasoning}{context}

REQUIREMENTS:
{newline.join(requirements)}

STRUCTURE:
{newline.join(structure)}"""


class StreetPromptBuilder(_BasePromptBuilder):
    """Blunt, informal English coach voice for ``blackhole`` mode."""

    def build_roadmap_prompt(self, session: BookSession) -> str:
        goal = _require_goal(session)
        reasoning = (
            f"\n- Why this matters: {session.reasoning}. Keep that in front of every module."
            if session.reasoning
            else ""
        )
        return f"""Alright, we're mapping out a no-nonsense learning plan for: "{goal}". No fluff. No filler.

PERSONA:
You're a blunt, street-smart coach who has done the work and has zero patience for padding. You talk straight, you keep it real, and every module you plan has to earn its place.

STYLE:
- Titles that grab attention: short, punchy, impossible to skim past.
- Objectives that are concrete and checkable. No vague "understand X".
- Honest time estimates, not wishful ones.
- Keep the energy high: this is a game plan, not a slideshow.

CONTEXT:
- Target Audience: {session.target_audience or "people who are done procrastinating"}
- Complexity Level: {_complexity(session)}. Stick to it.{reasoning}

MISSION SPECS:
- Minimum {self.min_modules} modules.
- Each module: a sharp title, 3-5 real objectives and a time estimate.

Return ONLY valid JSON:
{{
  "modules": [
    {{
      "title": "Module Title That Hits Hard",
      "objectives": ["Concrete Objective 1", "Concrete Objective 2"],
      "estimatedTime": "X hours of focused work"
    }}
  ],
  "estimatedReadingTime": "Total hours",
  "difficultyLevel": "{_complexity(session)}"
}}"""

    def build_module_prompt(
        self,
        session: BookSession,
        module_spec: RoadmapModule,
        prior_modules: list[BookModule],
        is_first: bool,
        index: int,
        total: int,
    ) -> str:
        goal = _require_goal(session)
        excerpts = self.context_excerpts(prior_modules, is_first)
        context = ""
        if excerpts:
            context = "\n\nWHAT WE ALREADY COVERED:\n" + "\n".join(
                f"- {title}: {excerpt}..." for title, excerpt in excerpts
            )
        reasoning = f"\n- Why this matters: {session.reasoning}" if session.reasoning else ""
        prefs = session.preferences
        examples = "\n- Examples: real-world stories only, make the reader see it in action." if prefs.include_examples else ""
        drills = "\n- Exercises: hands-on drills at the end, no skipping." if prefs.include_practical_exercises else ""
        drill_section = "\n### Drills (Prove It)" if prefs.include_practical_exercises else ""

        return f"""Chapter {index} of {total}: "{module_spec.title}". Let's go.

PERSONA:
You're a blunt, street-smart coach. Talk to the reader like a mentor who won't let them coast: short sentences, direct questions, plain language, tough love. Informal is fine. Sloppy facts are not: every claim has to be accurate and deep.

STYLE:
- Open with a hook that makes the reader sit up.
- Break hard ideas down with everyday comparisons.
- Ask the reader questions to keep them honest.
- End with a summary that dares them to apply it.

CONTEXT:
- Big Picture Goal: {goal}
- Objectives: {", ".join(module_spec.objectives)}
- Audience: {session.target_audience or "people who are done procrastinating"}{reasoning}{context}

MISSION SPECS:
- Word count: at least 2500 words (2500-4500).
- Markdown: ## for the title, ### for sections.{examples}{drills}

LAYOUT:
## {module_spec.title}
(Straight into the hook, no warm-up.)

### The Core (What You Actually Need to Know)
### In the Wild (How to Use It){drill_section}
### The Takeaway (What Sticks)"""


class DesiPromptBuilder(_BasePromptBuilder):
    """Informal Hinglish or Marathi-English voice for ``blackhole`` mode."""

    _MIX = {
        Language.HI: ("Hinglish", "Hindi", "bhai, yaar, dekho, samjha?"),
        Language.MR: ("Marathi-English", "Marathi", "bhau, mitra, bagh, samajla ka?"),
    }

    def _mix(self, session: BookSession) -> tuple[str, str, str]:
        return self._MIX.get(session.language, self._MIX[Language.HI])

    def build_roadmap_prompt(self, session: BookSession) -> str:
        goal = _require_goal(session)
        style, native, fillers = self._mix(session)
        reasoning = f"\n- Kyun zaroori hai: {session.reasoning}" if session.reasoning else ""
        return f"""Learning roadmap banao for: "{goal}".

PERSONA:
You are a friendly but no-nonsense desi mentor who explains things in {style}: English sentences mixed naturally with {native} words and phrases (for example: {fillers}). Titles can mix both languages. Keep it respectful, lively and practical.

CONTEXT:
- Target Audience: {session.target_audience or "students and working professionals"}
- Complexity: {_complexity(session)}{reasoning}

REQUIREMENTS:
- Minimum {self.min_modules} modules.
- Each module: a catchy title, 3-5 clear objectives and a realistic time estimate.
- JSON keys must stay in English exactly as shown.

Return ONLY valid JSON:
{{
  "modules": [
    {{
      "title": "Module Title",
      "objectives": ["Objective 1", "Objective 2"],
      "estimatedTime": "2-3 hours"
    }}
  ],
  "estimatedReadingTime": "20-25 hours",
  "difficultyLevel": "{_complexity(session)}"
}}"""

    def build_module_prompt(
        self,
        session: BookSession,
        module_spec: RoadmapModule,
        prior_modules: list[BookModule],
        is_first: bool,
        index: int,
        total: int,
    ) -> str:
        goal = _require_goal(session)
        style, native, fillers = self._mix(session)
        excerpts = self.context_excerpts(prior_modules, is_first)
        context = ""
        if excerpts:
            context = "\n\nPICHLE MODULES (recap):\n" + "\n".join(
                f"- {title}: {excerpt}..." for title, excerpt in excerpts
            )
        reasoning = f"\n- Kyun zaroori hai: {session.reasoning}" if session.reasoning else ""
        prefs = session.preferences
        extras = []
        if prefs.include_examples:
            extras.append("- Examples from everyday Indian life (chai tapri, local train, cricket, exams).")
        if prefs.include_practical_exercises:
            extras.append("- Practice exercises at the end.")
        extras_text = ("\n" + "\n".join(extras)) if extras else ""
        practice_section = "\n### Practice Time" if prefs.include_practical_exercises else ""

        return f"""Chapter {index} of {total}: "{module_spec.title}"

PERSONA:
You are a friendly desi mentor. Write in {style}: natural English mixed with {native} words and phrases ({fillers}). Keep the tone warm and direct, like explaining to a younger sibling before an exam. Technical terms stay in English. Facts must be accurate and detailed.

CONTEXT:
- Learning Goal: {goal}
- Objectives: {", ".join(module_spec.objectives)}
- Audience: {session.target_audience or "students and working professionals"}{reasoning}{context}

REQUIREMENTS:
- At least 2500 words (2500-4000).
- Markdown: ## for the title, ### for sections.{extras_text}

STRUCTURE:
## {module_spec.title}
### Shuruaat (Introduction)
### Main Concepts
### Real Life Mein{practice_section}
### Yaad Rakhna (Key Takeaways)"""


_BUILDERS: dict[Persona, type[_BasePromptBuilder]] = {
    Persona.ACADEMIC: AcademicPromptBuilder,
    Persona.STREET: StreetPromptBuilder,
    Persona.DESI: DesiPromptBuilder,
}


def get_prompt_builder(
    session: BookSession,
    context_modules: int = DEFAULT_CONTEXT_MODULES,
    context_chars: int = DEFAULT_CONTEXT_CHARS,
    min_modules: int = MIN_ROADMAP_MODULES,
) -> PromptBuilder:
    """Return the builder for the session's persona."""
    builder_cls = _BUILDERS[persona_for(session)]
    return builder_cls(
        context_modules=context_modules,
        context_chars=context_chars,
        min_modules=min_modules,
    )



def build_introduction_prompt(session: BookSession, roadmap: BookRoadmap) -> str:
    goal = _require_goal(session)
    titles = "\n".join(f"- {m.title}" for m in roadmap.modules)
    return f"""Generate a compelling introduction for: "{goal}"

ROADMAP:
{titles}

TARGET: {session.target_audience or "general learners"}
LEVEL: {roadmap.difficulty_level.value}

Write 800-1200 words covering:
- Welcome and book purpose
- What readers will learn
- Book structure overview
- Motivation and expectations
Use an engaging tone with ### markdown headers."""


def build_summary_prompt(session: BookSession, modules: list[BookModule]) -> str:
    goal = _require_goal(session)
    titles = "\n".join(f"- {m.title}" for m in modules)
    return f"""Generate a summary for: "{goal}"

MODULES:
{titles}

Write 600-900 words covering:
- Key learning outcomes
- Important concepts recap
- Next steps guidance
- Congratulations to the reader"""


def build_glossary_prompt(modules: list[BookModule]) -> str:
    content = "\n\n".join(m.content for m in modules)[:GLOSSARY_SOURCE_CHARS]
    return f"""Extract key terms from this content and create a glossary:
{content}

Create 20-30 terms with:
- Clear 1-2 sentence definitions
- Alphabetical order
- Focus on technical/important terms

Format:
**Term**: Definition.
**Term 2**: Definition."""
