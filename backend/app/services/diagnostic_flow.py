"""Diagnostic questionnaire controller.

Drives the multi-question wizard that precedes roadmap generation:

    LOADING -> QUESTION_ACTIVE <-> QUESTION_ACTIVE (previous/next)
            -> FOLLOWUP_ACTIVE <-> FOLLOWUP_ACTIVE
            -> SUBMITTING -> ROADMAP_READY | ERROR
    LOADING -> ALREADY_COMPLETE -> ROADMAP_READY (resumed finished session)

The gateway decides whether answers are sufficient. When it is not
satisfied it either returns follow-up questions (appended to the wizard)
or reports missing items, shown inline.

Failure policy: user-correctable failures (4xx, insufficient answers) are
shown inline via ``inline_message``. Infrastructure failures are logged
and the user is sent to /error (see failure_policy).
"""

import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Literal, TypeVar

import structlog

from app.core.errors import APIError, ValidationFailure
from app.schemas.gateway import DiagnosticQuestion, StartDiagnosticResponse
from app.services.auth_session import AuthSessionManager
from app.services.failure_policy import (
    ErrorRedirectGuard,
    FailureKind,
    classify_failure,
    report_infrastructure_failure,
)
from app.services.gateway_api import GatewayApi
from app.services.navigation import Navigator

logger = structlog.get_logger()

T = TypeVar("T")

Section = Literal["initial", "followup"]

MORE_DETAIL_MESSAGE = (
    "Please provide more detail in your answers so we can build your roadmap."
)
FOLLOWUP_MESSAGE = "We need a bit more detail. Please answer the follow-up questions."
UNANSWERED_MESSAGE = "Please answer all questions before submitting."
NO_QUESTIONS_MESSAGE = "No diagnostic questions are available right now."


# =============================================================================
# Categories
# =============================================================================


@dataclass(frozen=True)
class DiagnosticCategory:
    """A fixed sidebar category."""

    id: str
    name: str
    order: int


CATEGORIES: tuple[DiagnosticCategory, ...] = (
    DiagnosticCategory("career-snapshot", "Career Snapshot", 1),
    DiagnosticCategory("feeling-check", "Feeling Check", 2),
    DiagnosticCategory("root-cause-probe", "Root Cause Probe", 3),
    DiagnosticCategory("ideal-next-step", "Ideal Next Step", 4),
    DiagnosticCategory("readiness-support", "Readiness & Support", 5),
)

DEFAULT_CATEGORY_ID = CATEGORIES[0].id

# Gateway category names (normalized) -> category id
_CATEGORY_ALIASES: dict[str, str] = {
    "career snapshot": "career-snapshot",
    "snapshot": "career-snapshot",
    "current situation": "career-snapshot",
    "background": "career-snapshot",
    "career": "career-snapshot",
    "general": "career-snapshot",
    "feeling check": "feeling-check",
    "feeling": "feeling-check",
    "feelings": "feeling-check",
    "emotions": "feeling-check",
    "emotional": "feeling-check",
    "root cause probe": "root-cause-probe",
    "root cause": "root-cause-probe",
    "blockers": "root-cause-probe",
    "obstacles": "root-cause-probe",
    "challenges": "root-cause-probe",
    "ideal next step": "ideal-next-step",
    "next step": "ideal-next-step",
    "goal": "ideal-next-step",
    "goals": "ideal-next-step",
    "aspirations": "ideal-next-step",
    "readiness support": "readiness-support",
    "readiness and support": "readiness-support",
    "readiness": "readiness-support",
    "support": "readiness-support",
    "resources": "readiness-support",
}

_SEPARATORS = re.compile(r"[\s_\-&]+")


def normalize_category(raw: str | None) -> str:
    """Translate a gateway category name into a sidebar category id.

    Matching ignores case and treats spaces, underscores, hyphens and "&"
    alike. Unrecognized or missing names map to the first category.

    Args:
        raw: Category as sent by the gateway.

    Returns:
        One of the CATEGORIES ids.
    """
    if not raw:
        return DEFAULT_CATEGORY_ID
    key = _SEPARATORS.sub(" ", raw.strip().lower()).strip()
    return _CATEGORY_ALIASES.get(key, DEFAULT_CATEGORY_ID)


def is_answered(text: str | None) -> bool:
    """An answer counts once it has non-whitespace content."""
    return bool(text and text.strip())


# =============================================================================
# Wizard model
# =============================================================================


@dataclass(frozen=True)
class Question:
    """A question as shown in the wizard."""

    id: str
    text: str
    category_id: str

    @classmethod
    def from_gateway(cls, question: DiagnosticQuestion) -> "Question":
        return cls(
            id=question.question_id,
            text=question.question_text,
            category_id=normalize_category(question.category),
        )


@dataclass(frozen=True)
class CategoryProgress:
    """Sidebar entry derived from the current questions and answers."""

    id: str
    name: str
    order: int
    is_completed: bool
    is_active: bool


def category_completion(
    questions: Sequence[Question],
    answers: Mapping[str, str],
) -> dict[str, bool]:
    """Work out which categories are complete.

    A category is complete iff every question mapped to it has a non-blank
    answer. Completion is always derived, never stored.

    Returns:
        Mapping of category id to completion.
    """
    return {
        category.id: all(
            is_answered(answers.get(q.id))
            for q in questions
            if q.category_id == category.id
        )
        for category in CATEGORIES
    }


class FlowState(Enum):
    """Diagnostic wizard states."""

    LOADING = "loading"
    QUESTION_ACTIVE = "question_active"
    FOLLOWUP_ACTIVE = "followup_active"
    SUBMITTING = "submitting"
    ROADMAP_READY = "roadmap_ready"
    ALREADY_COMPLETE = "already_complete"
    ERROR = "error"


# =============================================================================
# Controller
# =============================================================================


class DiagnosticFlow:
    """Controller for one diagnostic session.

    Usage:
        flow = DiagnosticFlow(api, navigator, session=auth)
        await flow.start()
        flow.answer(flow.current_question.id, "I work as ...")
        await flow.next()
        ...
        if flow.state is FlowState.ROADMAP_READY:
            flow.open_roadmap()

    Calls are expected one at a time, in user-interaction order; the only
    overlap guarded against is a repeated submit while one is in flight.
    """

    def __init__(
        self,
        api: GatewayApi,
        navigator: Navigator,
        *,
        session: AuthSessionManager | None = None,
        guard: ErrorRedirectGuard | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            api: Gateway endpoints.
            navigator: Browser navigation (error page, roadmap view).
            session: Auth session manager; when given, gateway calls go
                through its retry-once-on-401 wrapper.
            guard: Error page redirect guard shared across the page.
        """
        self._api = api
        self._navigator = navigator
        self._session = session
        self._guard = guard or ErrorRedirectGuard()

        self.state = FlowState.LOADING
        self.session_id: str | None = None
        self.questions: list[Question] = []
        self.followup_questions: list[Question] = []
        self.section: Section = "initial"
        self.current_index = 0
        self.inline_message: str | None = None
        self.roadmap_id: str | None = None
        self._answers: dict[str, str] = {}
        self._submitting = False

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def answers(self) -> dict[str, str]:
        """Copy of the answer map (question id -> text)."""
        return dict(self._answers)

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    @property
    def visible_questions(self) -> list[Question]:
        """Initial questions followed by any follow-ups revealed so far."""
        return [*self.questions, *self.followup_questions]

    def _section_questions(self) -> list[Question]:
        return self.followup_questions if self.section == "followup" else self.questions

    @property
    def current_question(self) -> Question | None:
        questions = self._section_questions()
        if 0 <= self.current_index < len(questions):
            return questions[self.current_index]
        return None

    @property
    def can_submit(self) -> bool:
        """Every visible question has a non-blank answer."""
        visible = self.visible_questions
        return bool(visible) and all(is_answered(self._answers.get(q.id)) for q in visible)

    @property
    def roadmap_path(self) -> str | None:
        if self.roadmap_id is None:
            return None
        return f"/roadmap?roadmapId={self.roadmap_id}"

    def category_progress(self) -> list[CategoryProgress]:
        """Sidebar progress for the fixed categories."""
        completion = category_completion(self.visible_questions, self._answers)
        current = self.current_question
        return [
            CategoryProgress(
                id=category.id,
                name=category.name,
                order=category.order,
                is_completed=completion[category.id],
                is_active=current is not None and current.category_id == category.id,
            )
            for category in CATEGORIES
        ]

    # -------------------------------------------------------------------------
    # Gateway plumbing
    # -------------------------------------------------------------------------

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self._session is not None:
            return await self._session.call_with_refresh(operation)
        return await operation()

    def _active_state(self) -> FlowState:
        if self.section == "followup":
            return FlowState.FOLLOWUP_ACTIVE
        return FlowState.QUESTION_ACTIVE

    def _handle_failure(self, exc: Exception, operation: str) -> None:
        if classify_failure(exc) is FailureKind.INFRASTRUCTURE:
            self.state = FlowState.ERROR
            report_infrastructure_failure(
                exc,
                operation=operation,
                navigator=self._navigator,
                guard=self._guard,
                session_id=self.session_id,
            )
            return
        message = exc.message if isinstance(exc, APIError) else str(exc)
        logger.info(
            "Diagnostic request rejected",
            operation=operation,
            session_id=self.session_id,
            error=message,
        )
        self.inline_message = message
        if self.visible_questions:
            self.state = self._active_state()
        else:
            self.state = FlowState.ERROR

    # -------------------------------------------------------------------------
    # Start / resume
    # -------------------------------------------------------------------------

    async def start(self) -> FlowState:
        """Start a new diagnostic or resume the user's open one.

        Answers never carry over from a previous session: the answer map is
        rebuilt from ``existing_responses``, keeping only ids this session
        knows about.

        Returns:
            The state after loading.
        """
        self._reset()
        try:
            response = await self._call(self._api.start_diagnostic)
        except Exception as exc:
            self._handle_failure(exc, "start")
            return self.state

        self._load(response)

        if response.is_complete:
            self.state = FlowState.ALREADY_COMPLETE
            logger.info("Diagnostic already complete", session_id=self.session_id)
            await self._finish_with_roadmap(lookup_existing=True)
            return self.state

        if not self.questions:
            self.inline_message = NO_QUESTIONS_MESSAGE
            self.state = FlowState.ERROR
            return self.state

        self._position_at_first_unanswered()

        if response.ready_to_complete:
            logger.info("Diagnostic ready to complete, verifying", session_id=self.session_id)
            await self._submit()
        return self.state

    def _reset(self) -> None:
        self.state = FlowState.LOADING
        self.session_id = None
        self.questions = []
        self.followup_questions = []
        self.section = "initial"
        self.current_index = 0
        self.inline_message = None
        self.roadmap_id = None
        self._answers = {}

    def _load(self, response: StartDiagnosticResponse) -> None:
        self.session_id = response.session_id
        self.questions = [Question.from_gateway(q) for q in response.questions]
        self.followup_questions = [
            Question.from_gateway(q) for q in response.followup_questions
        ]
        known = {q.id for q in self.visible_questions}
        self._answers = {
            qid: text for qid, text in response.existing_responses.items() if qid in known
        }

    def _position_at_first_unanswered(self) -> None:
        for index, question in enumerate(self.questions):
            if not is_answered(self._answers.get(question.id)):
                self.section, self.current_index = "initial", index
                self.state = FlowState.QUESTION_ACTIVE
                return
        for index, question in enumerate(self.followup_questions):
            if not is_answered(self._answers.get(question.id)):
                self.section, self.current_index = "followup", index
                self.state = FlowState.FOLLOWUP_ACTIVE
                return
        # Everything answered: show the last question so the user can submit
        if self.followup_questions:
            self.section = "followup"
            self.current_index = len(self.followup_questions) - 1
        else:
            self.section = "initial"
            self.current_index = len(self.questions) - 1
        self.state = self._active_state()

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def answer(self, question_id: str, text: str) -> None:
        """Record an answer. Blank answers are allowed until submit time.

        Raises:
            ValidationFailure: The id is not a question of this session.
        """
        if question_id not in {q.id for q in self.visible_questions}:
            raise ValidationFailure(f"Unknown question: {question_id}")
        self._answers[question_id] = text
        self.inline_message = None

    async def next(self) -> FlowState:
        """Move forward; past the last question, go to follow-ups or submit."""
        questions = self._section_questions()
        if self.current_index < len(questions) - 1:
            self.current_index += 1
        elif self.section == "initial" and self.followup_questions:
            self.section, self.current_index = "followup", 0
            self.state = FlowState.FOLLOWUP_ACTIVE
        else:
            await self.submit()
        return self.state

    def previous(self) -> FlowState:
        """Move back; before the first follow-up, return to the last question."""
        if self.current_index > 0:
            self.current_index -= 1
        elif self.section == "followup" and self.questions:
            self.section = "initial"
            self.current_index = len(self.questions) - 1
            self.state = FlowState.QUESTION_ACTIVE
        return self.state

    def jump_to_category(self, category_id: str) -> bool:
        """Jump to the first initial question in a category.

        Returns:
            True if a question was found and is now current.
        """
        for index, question in enumerate(self.questions):
            if question.category_id == category_id:
                self.section, self.current_index = "initial", index
                self.state = FlowState.QUESTION_ACTIVE
                return True
        return False

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def submit(self) -> FlowState:
        """Submit the answers if every visible question is answered.

        A call made while a submission is in flight is a no-op.
        """
        if self._submitting:
            return self.state
        if not self.can_submit:
            self.inline_message = UNANSWERED_MESSAGE
            return self.state
        await self._submit()
        return self.state

    async def _submit(self) -> None:
        if self._submitting or self.session_id is None:
            return
        self._submitting = True
        self.state = FlowState.SUBMITTING
        self.inline_message = None
        session_id = self.session_id
        try:
            result = await self._call(
                lambda: self._api.submit_responses(session_id, dict(self._answers))
            )
            known = {q.id for q in self.visible_questions}
            new_followups = [
                Question.from_gateway(q)
                for q in result.followup_questions
                if q.question_id not in known
            ]
            if new_followups:
                first_new = len(self.followup_questions)
                self.followup_questions.extend(new_followups)
                self.section, self.current_index = "followup", first_new
                self.state = FlowState.FOLLOWUP_ACTIVE
                self.inline_message = FOLLOWUP_MESSAGE
                logger.info(
                    "Follow-up questions added",
                    session_id=session_id,
                    count=len(new_followups),
                )
                return
            if result.is_complete:
                await self._call(lambda: self._api.complete_diagnostic(session_id))
                await self._finish_with_roadmap(lookup_existing=False)
                return
            logger.info(
                "Diagnostic answers insufficient",
                session_id=session_id,
                missing_items=len(result.missing_items),
            )
            self.inline_message = MORE_DETAIL_MESSAGE
            self.state = self._active_state()
        except Exception as exc:
            self._handle_failure(exc, "submit")
        finally:
            self._submitting = False

    async def _finish_with_roadmap(self, *, lookup_existing: bool) -> None:
        session_id = self.session_id
        if session_id is None:
            return
        try:
            roadmap_id = None
            if lookup_existing:
                listing = await self._call(self._api.list_roadmaps)
                roadmap_id = next(
                    (
                        r.id
                        for r in listing.roadmaps
                        if r.diagnostic_session_id == session_id
                    ),
                    None,
                )
            if roadmap_id is None:
                generated = await self._call(
                    lambda: self._api.generate_roadmap(session_id)
                )
                roadmap_id = generated.roadmap_id
        except Exception as exc:
            self._handle_failure(exc, "roadmap")
            return
        self.roadmap_id = roadmap_id
        self.state = FlowState.ROADMAP_READY
        logger.info("Roadmap ready", session_id=session_id, roadmap_id=roadmap_id)

    def open_roadmap(self) -> None:
        """Navigate to the roadmap view for the generated roadmap."""
        if self.roadmap_path is not None:
            self._navigator.assign(self.roadmap_path)
