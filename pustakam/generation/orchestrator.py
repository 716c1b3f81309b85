"""Book generation pipeline: roadmap, modules, assembly.

Generation is strictly sequential. The project is checkpointed to the
store after every state change so a run interrupted at any point can be
resumed from the last snapshot without regenerating finished modules.
"""

import logging
import random
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from pustakam.config import AppConfig
from pustakam.errors import (
    AuthenticationError,
    ConfigurationError,
    GenerationError,
    GenerationInProgressError,
    InvalidTransitionError,
    MalformedResponseError,
    PustakamError,
    RateLimitError,
    is_retryable,
)
from pustakam.generation.assembly import assemble_final_book
from pustakam.generation.llm_client import GenerationResult
from pustakam.generation.prompts import (
    PromptBuilder,
    build_glossary_prompt,
    build_introduction_prompt,
    build_summary_prompt,
    get_prompt_builder,
)
from pustakam.generation.roadmap import parse_roadmap_response
from pustakam.generation.state import (
    TERMINAL_STATUSES,
    GenerationEvent,
    can_transition,
    transition,
)
from pustakam.models.book import (
    BookModule,
    BookProject,
    BookRoadmap,
    BookSession,
    BookStatus,
    ModuleStatus,
    count_words,
)
from pustakam.models.settings import PROVIDER_MODELS, APISettings, provider_display_name
from pustakam.storage.repository import LocalStore

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


class TextGenerator(Protocol):
    def generate(self, provider: str, model: str, api_key: str | None, prompt: str) -> GenerationResult: ...


@dataclass
class ProgressEvent:
    """Observational progress report. Never drives control flow."""

    book_id: str
    stage: str  # "roadmap", "module", "retry", "assembly", "cancelled", "error"
    message: str
    percent: int = 0
    module_index: int | None = None
    total_modules: int | None = None
    generated_text: str | None = None
    level: str = "info"  # "info", "warning", "error"


@dataclass
class GenerationOutcome:
    """Result of one pass over the module list."""

    completed: int = 0
    failed: int = 0
    cancelled: bool = False

    @property
    def has_gaps(self) -> bool:
        return self.failed > 0


class CancellationToken:
    """Cooperative cancel flag, checked between modules."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class BookGenerator:
    """Drives a book project through its generation lifecycle.

    Args:
        client: Anything with ``generate(provider, model, api_key, prompt)``.
        store: Repository used for checkpoints.
        settings: Provider selection and keys; read from ``store`` when None.
        config: Application configuration.
        user_id: Book partition to checkpoint into.
        sleep: Called for every retry and pacing delay.
        on_progress: Optional progress callback.
        jitter: Returns a float in [0, 1) scaled by the configured jitter.
    """

    def __init__(
        self,
        client: TextGenerator,
        store: LocalStore,
        settings: APISettings | None = None,
        config: AppConfig | None = None,
        *,
        user_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = settings or store.get_settings()
        self.config = config or AppConfig()
        self.user_id = user_id
        self._sleep = sleep
        self._on_progress = on_progress
        self._jitter = jitter

        self._lock = threading.Lock()
        self._active: set[str] = set()
        self._tokens: dict[str, CancellationToken] = {}

    @property
    def provider(self) -> str:
        return self.settings.selected_provider

    @property
    def model(self) -> str:
        return self.settings.selected_model

    def _api_key(self) -> str | None:
        return self.settings.api_key_for(self.provider) or self.config.provider_api_keys.get(self.provider)

    def validate_settings(self) -> list[str]:
        """Return human-readable configuration problems; empty when ready."""
        problems: list[str] = []
        if self.provider not in PROVIDER_MODELS:
            problems.append(f"Unknown provider: {self.provider}")
        elif self.model not in PROVIDER_MODELS[self.provider]:
            problems.append(f"Model {self.model} is not offered by {provider_display_name(self.provider)}")
        if not self._api_key():
            problems.append(f"No API key configured for {provider_display_name(self.provider)}")
        return problems

    def _require_valid_settings(self) -> None:
        problems = self.validate_settings()
        if problems:
            raise ConfigurationError("; ".join(problems))

    @contextmanager
    def _generation_guard(self, book_id: str, token: CancellationToken | None = None) -> Iterator[CancellationToken]:
        with self._lock:
            if book_id in self._active:
                raise GenerationInProgressError(f"Generation already running for book {book_id}")
            self._active.add(book_id)
            token = token or CancellationToken()
            self._tokens[book_id] = token
        try:
            yield token
        finally:
            with self._lock:
                self._active.discard(book_id)
                self._tokens.pop(book_id, None)

    def is_generating(self, book_id: str) -> bool:
        with self._lock:
            return book_id in self._active

    def cancel(self, book_id: str) -> bool:
        """Ask the running generation of ``book_id`` to stop after the current module.

        Returns:
            True if a running generation was signalled.
        """
        with self._lock:
            token = self._tokens.get(book_id)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancellation requested for book %s", book_id)
        return True

    def _emit(self, project: BookProject, stage: str, message: str, *, level: str = "info", **fields) -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "[%s] %s: %s", stage, project.id, message)
        if self._on_progress is None:
            return
        event = ProgressEvent(
            book_id=project.id,
            stage=stage,
            message=message,
            percent=project.progress,
            level=level,
            **fields,
        )
        try:
            self._on_progress(event)
        except Exception:
            logger.exception("Progress callback failed for book %s", project.id)

    def _apply(self, project: BookProject, event: GenerationEvent) -> None:
        project.status = transition(project.status, event)
        project.touch()

    def _checkpoint(self, project: BookProject) -> None:
        project.check_invariants()
        if not self.store.save_book(project, self.user_id):
            logger.warning("Checkpoint for book %s was not persisted", project.id)

    def _fail(self, project: BookProject, message: str) -> None:
        if project.status not in TERMINAL_STATUSES:
            self._apply(project, GenerationEvent.FAIL)
        project.error = message
        self._checkpoint(project)
        self._emit(project, "error", message, level="error")

    def _call(self, prompt: str) -> GenerationResult:
        return self.client.generate(self.provider, self.model, self._api_key(), prompt)

    def _builder(self, session: BookSession) -> PromptBuilder:
        gen = self.config.generation
        return get_prompt_builder(
            session,
            context_modules=gen.context_modules,
            context_chars=gen.context_chars,
            min_modules=gen.min_roadmap_modules,
        )

    def _retry_delay(self, attempt: int, error: BaseException) -> float:
        gen = self.config.generation
        if isinstance(error, RateLimitError):
            base = error.retry_after if error.retry_after is not None else gen.rate_limit_delay_seconds
        elif gen.retry_delays_seconds:
            base = gen.retry_delays_seconds[min(attempt - 1, len(gen.retry_delays_seconds) - 1)]
        else:
            base = 0.0
        return base + self._jitter() * gen.retry_jitter_seconds

    def create_project(self, session: BookSession, title: str | None = None) -> BookProject:
        """Create and persist a new project in ``planning`` status.

        Raises:
            ValueError: If the learning goal is blank.
        """
        goal = session.goal.strip()
        if not goal:
            raise ValueError("Learning goal must not be empty")
        if not title:
            title = goal if len(goal) <= 100 else goal[:100] + "..."
        project = BookProject(
            title=title,
            goal=goal,
            language=session.language,
            generation_mode=session.generation_mode,
            session=session,
            provider=self.provider,
            model=self.model,
        )
        self._checkpoint(project)
        self._emit(project, "planning", f"Created book '{project.title}'")
        return project

    def generate_roadmap(self, project: BookProject) -> BookRoadmap:
        """Generate (or replace) the roadmap and create one pending slot per module.

        Raises:
            ConfigurationError: Settings are incomplete or the key is rejected.
            GenerationError: All roadmap attempts failed.
            GenerationInProgressError: The book is already being generated.
        """
        with self._generation_guard(project.id):
            return self._generate_roadmap(project)

    def regenerate_roadmap(self, project: BookProject) -> BookRoadmap:
        """Replace an existing roadmap; every module is reset to pending."""
        if project.roadmap is None:
            raise InvalidTransitionError(f"Book {project.id} has no roadmap to regenerate")
        return self.generate_roadmap(project)

    def _generate_roadmap(self, project: BookProject) -> BookRoadmap:
        self._require_valid_settings()
        gen = self.config.generation

        self._apply(project, GenerationEvent.START_ROADMAP)
        project.roadmap = None
        project.modules = []
        project.final_book = None
        project.total_words = 0
        project.error = None
        project.progress = 5
        project.provider, project.model = self.provider, self.model
        self._checkpoint(project)
        self._emit(project, "roadmap", "Generating roadmap")

        builder = self._builder(project.session)
        last_error: PustakamError | None = None
        roadmap: BookRoadmap | None = None
        for attempt in range(1, gen.roadmap_max_attempts + 1):
            try:
                result = self._call(builder.build_roadmap_prompt(project.session))
                roadmap = parse_roadmap_response(result.text, project.session, gen.min_roadmap_modules)
                break
            except (AuthenticationError, ConfigurationError) as exc:
                self._fail(project, exc.user_message)
                raise
            except PustakamError as exc:
                last_error = exc
                logger.warning("Roadmap attempt %d/%d failed: %s", attempt, gen.roadmap_max_attempts, exc)
                if not is_retryable(exc):
                    break
                if attempt < gen.roadmap_max_attempts:
                    self._emit(project, "retry", f"Roadmap attempt {attempt} failed, retrying", level="warning")
                    self._sleep(gen.roadmap_retry_delay_seconds)

        if roadmap is None:
            self._fail(project, "Roadmap generation failed")
            raise GenerationError(
                f"Roadmap generation failed: {last_error}",
                "roadmap",
                user_message="Roadmap generation failed. Try again or switch to a different model.",
            ) from last_error

        project.roadmap = roadmap
        project.modules = [BookModule(roadmap_module_id=m.id, title=m.title) for m in roadmap.modules]
        self._apply(project, GenerationEvent.ROADMAP_READY)
        project.progress = 10
        self._checkpoint(project)
        self._emit(
            project,
            "roadmap",
            f"Roadmap ready with {roadmap.total_modules} modules",
            total_modules=roadmap.total_modules,
        )
        return roadmap

    def generate_modules(
        self, project: BookProject, cancel: CancellationToken | None = None
    ) -> GenerationOutcome:
        """Generate every module that is not completed yet, in roadmap order.

        A module that keeps failing is marked ``error`` and the run moves on.
        Authentication and configuration problems abort the run.
        """
        with self._generation_guard(project.id, cancel) as token:
            return self._generate_modules(project, token)

    def _generate_modules(self, project: BookProject, token: CancellationToken) -> GenerationOutcome:
        if project.roadmap is None:
            raise GenerationError("No roadmap available", "module", recoverable=False)
        self._require_valid_settings()

        if not project.modules:
            project.modules = [BookModule(roadmap_module_id=m.id, title=m.title) for m in project.roadmap.modules]
        self._apply(project, GenerationEvent.START_CONTENT)
        project.error = None
        project.progress = max(project.progress, 15)
        self._checkpoint(project)

        builder = self._builder(project.session)
        total = len(project.modules)
        pending = [i for i, m in enumerate(project.modules) if m.status != ModuleStatus.COMPLETED]
        if len(pending) < total:
            self._emit(project, "module", f"Resuming with {len(pending)} of {total} modules left")

        for position, index in enumerate(pending):
            if token.is_cancelled:
                self._checkpoint(project)
                self._emit(project, "cancelled", "Generation cancelled, progress saved", level="warning")
                return self._outcome(project, cancelled=True)

            self._generate_module(project, index, builder)

            delay = self.config.generation.inter_module_delay_seconds
            if position < len(pending) - 1 and delay > 0:
                self._sleep(delay)

        return self._outcome(project)

    @staticmethod
    def _outcome(project: BookProject, cancelled: bool = False) -> GenerationOutcome:
        return GenerationOutcome(
            completed=len(project.completed_modules),
            failed=len(project.failed_modules),
            cancelled=cancelled,
        )

    def _generate_module(self, project: BookProject, index: int, builder: PromptBuilder) -> bool:
        """Generate one module with retries. Returns True on success."""
        gen = self.config.generation
        module = project.modules[index]
        spec = project.roadmap.modules[index]
        total = len(project.modules)

        if module.status == ModuleStatus.ERROR:
            module.attempts = 0
        module.status = ModuleStatus.GENERATING
        module.error = None
        project.touch()
        self._checkpoint(project)
        self._emit(
            project,
            "module",
            f"Generating module {index + 1}/{total}: {module.title}",
            module_index=index,
            total_modules=total,
        )

        prior = [m for m in project.modules[:index] if m.status == ModuleStatus.COMPLETED]
        prompt = builder.build_module_prompt(
            project.session, spec, prior, is_first=not prior, index=index + 1, total=total
        )

        while True:
            module.attempts += 1
            try:
                result = self._call(prompt)
                text = result.text.strip()
                words = count_words(text)
                if words < gen.min_module_words:
                    raise MalformedResponseError(
                        f"Generated content too short ({words} words)", self.provider
                    )
            except (AuthenticationError, ConfigurationError) as exc:
                module.status = ModuleStatus.ERROR
                module.error = exc.user_message
                self._fail(project, exc.user_message)
                raise
            except PustakamError as exc:
                if is_retryable(exc) and module.attempts < gen.module_max_attempts:
                    delay = self._retry_delay(module.attempts, exc)
                    self._checkpoint(project)
                    self._emit(
                        project,
                        "retry",
                        f"{module.title}: {exc}. Retrying in {delay:.0f}s "
                        f"(attempt {module.attempts + 1}/{gen.module_max_attempts})",
                        level="warning",
                        module_index=index,
                        total_modules=total,
                    )
                    self._sleep(delay)
                    continue

                module.status = ModuleStatus.ERROR
                module.error = str(exc)
                module.generated_at = datetime.now()
                project.touch()
                self._checkpoint(project)
                self._emit(
                    project,
                    "module",
                    f"Module {index + 1} '{module.title}' failed after {module.attempts} attempt(s): {exc}",
                    level="warning",
                    module_index=index,
                    total_modules=total,
                )
                return False

            module.content = text
            module.word_count = words
            module.status = ModuleStatus.COMPLETED
            module.generated_at = datetime.now()
            module.error = None
            project.total_words = sum(m.word_count for m in project.completed_modules)
            project.progress = 15 + int(75 * len(project.completed_modules) / total)
            project.touch()
            self._checkpoint(project)
            self._emit(
                project,
                "module",
                f"Completed module {index + 1}/{total}: {module.title} ({words} words)",
                module_index=index,
                total_modules=total,
                generated_text=text[-800:],
            )
            return True

    def assemble(self, project: BookProject) -> str:
        """Assemble completed modules into ``final_book``.

        Failed modules are left out and the project ends ``completed_with_gaps``.
        """
        with self._generation_guard(project.id):
            return self._assemble(project)

    def _optional_section(self, project: BookProject, name: str, prompt: str) -> str | None:
        try:
            return self._call(prompt).text
        except PustakamError as exc:
            self._emit(project, "assembly", f"Skipping {name}: {exc}", level="warning")
            return None

    def _assemble(self, project: BookProject) -> str:
        if project.roadmap is None or not project.modules:
            raise GenerationError("Nothing to assemble", "assembly", recoverable=False)
        unfinished = [m for m in project.modules if m.status in (ModuleStatus.PENDING, ModuleStatus.GENERATING)]
        if unfinished:
            raise GenerationError(
                f"{len(unfinished)} module(s) have not been generated yet",
                "assembly",
            )
        completed = project.completed_modules
        failed = project.failed_modules
        if not completed:
            self._fail(project, "No modules were generated")
            raise GenerationError("No modules were generated", "assembly")

        self._apply(project, GenerationEvent.CONTENT_DONE)
        project.progress = 90
        self._checkpoint(project)
        self._emit(project, "assembly", "Assembling final book")

        introduction = summary = glossary = None
        if self.config.generation.enrich_final_book:
            introduction = self._optional_section(
                project, "introduction", build_introduction_prompt(project.session, project.roadmap)
            )
            summary = self._optional_section(project, "summary", build_summary_prompt(project.session, completed))
            glossary = self._optional_section(project, "glossary", build_glossary_prompt(completed))

        project.final_book = assemble_final_book(
            project.title,
            completed,
            provider_name=provider_display_name(project.provider),
            model=project.model,
            failed=failed,
            introduction=introduction,
            summary=summary,
            glossary=glossary,
        )
        project.total_words = sum(m.word_count for m in completed)
        if failed:
            self._apply(project, GenerationEvent.ASSEMBLED_WITH_GAPS)
            project.error = f"{len(failed)} module(s) failed and were left out"
            level = "warning"
        else:
            self._apply(project, GenerationEvent.ASSEMBLED)
            project.error = None
            level = "info"
        project.progress = 100
        self._checkpoint(project)
        self._emit(project, "assembly", f"Book assembled: {project.total_words} words", level=level)
        return project.final_book

    def run(
        self,
        session: BookSession,
        title: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> BookProject:
        """Create a project and take it from roadmap to assembled book."""
        self._require_valid_settings()
        project = self.create_project(session, title)
        with self._generation_guard(project.id, cancel) as token:
            self._generate_roadmap(project)
            outcome = self._generate_modules(project, token)
            if not outcome.cancelled:
                self._assemble(project)
        return project

    def resume(self, book_id: str, cancel: CancellationToken | None = None) -> BookProject:
        """Continue a stored project from the stage it was checkpointed in.

        Completed modules are never regenerated.

        Raises:
            GenerationError: If the book does not exist.
        """
        project = self.store.get_book(book_id, self.user_id)
        if project is None:
            raise GenerationError(f"Book {book_id} not found", "resume", recoverable=False)
        if project.status in TERMINAL_STATUSES:
            logger.info("Book %s is already %s, nothing to resume", book_id, project.status.value)
            return project

        with self._generation_guard(project.id, cancel) as token:
            if project.roadmap is None:
                self._generate_roadmap(project)
            if project.status != BookStatus.ASSEMBLING:
                outcome = self._generate_modules(project, token)
                if outcome.cancelled:
                    return project
            self._assemble(project)
        return project

    def retry_failed_modules(self, project: BookProject, cancel: CancellationToken | None = None) -> BookProject:
        """Re-attempt every failed module, then re-assemble."""
        if project.status not in (BookStatus.COMPLETED_WITH_GAPS, BookStatus.ERROR):
            raise InvalidTransitionError(
                f"Book {project.id} is {project.status.value}, nothing to retry"
            )
        if not project.failed_modules:
            logger.info("Book %s has no failed modules", project.id)
            return project

        with self._generation_guard(project.id, cancel) as token:
            outcome = self._generate_modules(project, token)
            if not outcome.cancelled:
                self._assemble(project)
        return project

    def regenerate_module(self, project: BookProject, index: int) -> BookProject:
        """Replace one module's content, then re-assemble the book.

        If the new attempt fails the previous content is kept.

        Raises:
            IndexError: If ``index`` is out of range.
            GenerationError: If the module could not be regenerated.
        """
        if project.roadmap is None or not 0 <= index < len(project.modules):
            raise IndexError(f"Module index {index} out of range")

        with self._generation_guard(project.id):
            self._require_valid_settings()
            previous = project.modules[index].model_copy(deep=True)
            previous_status, previous_error = project.status, project.error
            if can_transition(project.status, GenerationEvent.REGENERATE):
                self._apply(project, GenerationEvent.REGENERATE)
            else:
                self._apply(project, GenerationEvent.START_CONTENT)

            project.modules[index].status = ModuleStatus.PENDING
            project.modules[index].attempts = 0
            try:
                succeeded = self._generate_module(project, index, self._builder(project.session))
            except PustakamError:
                if previous.status == ModuleStatus.COMPLETED:
                    # Fatal provider errors roll the book back to its state before regeneration
                    project.modules[index] = previous
                    project.status = previous_status
                    project.error = previous_error
                    project.touch()
                    self._checkpoint(project)
                    logger.warning("Regeneration of module %d aborted, kept previous content", index + 1)
                raise

            if not succeeded and previous.status == ModuleStatus.COMPLETED:
                failure = project.modules[index].error
                project.modules[index] = previous
                project.total_words = sum(m.word_count for m in project.completed_modules)
                logger.warning("Regeneration of module %d failed, kept previous content", index + 1)
            else:
                failure = None if succeeded else project.modules[index].error

            if any(m.status == ModuleStatus.PENDING for m in project.modules):
                self._checkpoint(project)
            else:
                self._assemble(project)

        if not succeeded:
            raise GenerationError(
                f"Could not regenerate module {index + 1}: {failure}",
                "module",
                module_title=project.modules[index].title,
            )
        return project
