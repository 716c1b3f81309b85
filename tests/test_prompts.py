"""Tests for prompt construction."""

import pytest

from pustakam.generation.prompts import (
    AcademicPromptBuilder,
    DesiPromptBuilder,
    Persona,
    StreetPromptBuilder,
    build_glossary_prompt,
    build_introduction_prompt,
    build_summary_prompt,
    get_prompt_builder,
    persona_for,
)
from pustakam.models import (
    BookModule,
    BookRoadmap,
    BookSession,
    ComplexityLevel,
    GenerationMode,
    Language,
    ModuleStatus,
    RoadmapModule,
)


def _session(**kwargs: object) -> BookSession:
    data: dict[str, object] = {"goal": "Learn Python for data science"}
    data.update(kwargs)
    return BookSession.model_validate(data)


def _module(title: str, content: str) -> BookModule:
    return BookModule(roadmap_module_id=title, title=title, content=content, status=ModuleStatus.COMPLETED)


SPEC = RoadmapModule(id="module_3", title="Pandas Basics", objectives=["Load data", "Filter rows"], order=3)


class TestPersonaSelection:
    def test_stellar_is_academic(self) -> None:
        assert persona_for(_session()) == Persona.ACADEMIC

    def test_stellar_hindi_is_still_academic(self) -> None:
        assert persona_for(_session(language="hi")) == Persona.ACADEMIC

    def test_blackhole_english_is_street(self) -> None:
        assert persona_for(_session(generation_mode="blackhole")) == Persona.STREET

    @pytest.mark.parametrize("language", ["hi", "mr"])
    def test_blackhole_indic_is_desi(self, language: str) -> None:
        assert persona_for(_session(generation_mode="blackhole", language=language)) == Persona.DESI

    def test_factory_returns_matching_builder(self) -> None:
        builder = get_prompt_builder(_session(generation_mode=GenerationMode.BLACKHOLE))
        assert isinstance(builder, StreetPromptBuilder)


class TestRoadmapPrompt:
    def test_academic_roadmap(self) -> None:
        session = _session(target_audience="analysts", complexity_level=ComplexityLevel.ADVANCED)
        prompt = AcademicPromptBuilder().build_roadmap_prompt(session)

        assert 'Create a comprehensive learning roadmap for: "Learn Python for data science"' in prompt
        assert "minimum of 10" in prompt
        assert "Target audience: analysts" in prompt
        assert "Complexity: advanced" in prompt
        assert "Return ONLY valid JSON" in prompt

    def test_reasoning_included_when_given(self) -> None:
        prompt = AcademicPromptBuilder().build_roadmap_prompt(_session(reasoning="career switch"))
        assert "career switch" in prompt

    def test_min_modules_configurable(self) -> None:
        prompt = StreetPromptBuilder(min_modules=6).build_roadmap_prompt(_session())
        assert "Minimum 6 modules." in prompt

    @pytest.mark.parametrize("builder_cls", [AcademicPromptBuilder, StreetPromptBuilder, DesiPromptBuilder])
    def test_every_persona_asks_for_json(self, builder_cls: type) -> None:
        prompt = builder_cls().build_roadmap_prompt(_session())
        assert "Return ONLY valid JSON" in prompt
        assert '"modules"' in prompt

    @pytest.mark.parametrize("goal", ["", "   "])
    def test_empty_goal_rejected(self, goal: str) -> None:
        with pytest.raises(ValueError):
            AcademicPromptBuilder().build_roadmap_prompt(_session(goal=goal))

    def test_desi_marathi_mix(self) -> None:
        prompt = DesiPromptBuilder().build_roadmap_prompt(_session(language=Language.MR))
        assert "Marathi-English" in prompt


class TestModulePrompt:
    def test_first_module_has_no_context(self) -> None:
        prompt = AcademicPromptBuilder().build_module_prompt(_session(), SPEC, [], True, 1, 10)
        assert "PREVIOUS MODULES CONTEXT" not in prompt
        assert "Provide an introduction to the subject" in prompt
        assert "Module 1 of 10" in prompt

    def test_context_uses_last_two_modules_truncated(self) -> None:
        prior = [_module("One", "a" * 50), _module("Two", "b" * 500), _module("Three", "c" * 20)]
        prompt = AcademicPromptBuilder().build_module_prompt(_session(), SPEC, prior, False, 4, 10)

        assert "PREVIOUS MODULES CONTEXT:" in prompt
        assert "One:" not in prompt
        assert f"Two: {'b' * 300}..." in prompt
        assert "b" * 301 not in prompt
        assert f"Three: {'c' * 20}..." in prompt

    def test_context_budget_configurable(self) -> None:
        builder = AcademicPromptBuilder(context_modules=1, context_chars=5)
        excerpts = builder.context_excerpts([_module("A", "alpha beta"), _module("B", "gamma delta")], False)
        assert excerpts == [("B", "gamma")]

    def test_structure_headings(self) -> None:
        prompt = AcademicPromptBuilder().build_module_prompt(_session(), SPEC, [], True, 3, 12)
        assert "## Pandas Basics" in prompt
        for heading in ("### Introduction", "### Core Concepts", "### Practical Application", "### Key Takeaways"):
            assert heading in prompt
        assert "### Practice Exercises" not in prompt
        assert "Write at least 2500 words" in prompt
        assert "Load data, Filter rows" in prompt

    def test_exercises_preference_adds_section(self) -> None:
        session = _session(preferences={"include_practical_exercises": True})
        prompt = AcademicPromptBuilder().build_module_prompt(session, SPEC, [], True, 1, 10)
        assert "### Practice Exercises" in prompt
        assert "Add exercises at the end" in prompt

    def test_street_module_prompt(self) -> None:
        prior = [_module("Setup", "Install things")]
        prompt = StreetPromptBuilder().build_module_prompt(_session(), SPEC, prior, False, 2, 10)
        assert "Chapter 2 of 10" in prompt
        assert "WHAT WE ALREADY COVERED:" in prompt
        assert "- Setup: Install things..." in prompt

    def test_desi_module_prompt(self) -> None:
        prior = [_module("Setup", "Install things")]
        prompt = DesiPromptBuilder().build_module_prompt(_session(language="hi"), SPEC, prior, False, 2, 10)
        assert "Hinglish" in prompt
        assert "PICHLE MODULES (recap):" in prompt

    def test_builders_do_not_mutate_input(self) -> None:
        prior = [_module("One", "x" * 1000)]
        AcademicPromptBuilder().build_module_prompt(_session(), SPEC, prior, False, 2, 10)
        assert prior[0].content == "x" * 1000


class TestAssemblyPrompts:
    def test_introduction_lists_roadmap(self) -> None:
        roadmap = BookRoadmap(
            modules=[RoadmapModule(id="module_1", title="Setup", order=1)],
            total_modules=1,
        )
        prompt = build_introduction_prompt(_session(), roadmap)
        assert "- Setup" in prompt
        assert "LEVEL: intermediate" in prompt

    def test_summary_lists_modules(self) -> None:
        prompt = build_summary_prompt(_session(), [_module("Setup", "x"), _module("Plots", "y")])
        assert "- Setup\n- Plots" in prompt

    def test_glossary_source_is_capped(self) -> None:
        prompt = build_glossary_prompt([_module("Big", "z" * 20000)])
        assert "z" * 12000 in prompt
        assert "z" * 12001 not in prompt
