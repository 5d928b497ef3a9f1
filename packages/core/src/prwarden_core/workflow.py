"""Review Workflow Engine.

One ReviewSession per pull request under review, driven through a fixed set of
phases by a transitions state machine:

    COLLECTING -> PRESENTING -> SELECTING -> SUBMITTING -> LEARNING -> DONE
    COLLECTING -> SELECTING    (non-interactive: issues streamed in by an agent)

CANCELLED is reachable from PRESENTING and SELECTING only. DONE and CANCELLED
are terminal; a finished session is never reused.

Usage:
    workflow = ReviewWorkflow(client, guideline_store)
    session = workflow.start_session(ref)
    workflow.collect(session, issues)
    workflow.present(session)
    workflow.select(session, "1,3")
    report = workflow.submit(session)
    workflow.learn(session, confirm=lambda categories: True)
    workflow.approve(session)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from github import GithubException
from prwarden_store.guidelines import GuidelineStore, normalize_category
from transitions import Machine, MachineError

from prwarden_core.errors import ApprovalNotAllowed, PhaseError, StaleSessionError
from prwarden_core.gh.base import HostingClient
from prwarden_core.learning import categorize
from prwarden_core.models import Issue, PullRequestRef, Severity, SubmissionState
from prwarden_core.selection import Selection, parse_selection
from prwarden_core.submission import SubmissionClient

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    COLLECTING = "collecting"
    PRESENTING = "presenting"
    SELECTING = "selecting"
    SUBMITTING = "submitting"
    LEARNING = "learning"
    DONE = "done"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.DONE, Phase.CANCELLED)


STATES = [phase.value for phase in Phase]

TRANSITIONS = [
    {"trigger": "finish_collecting", "source": "collecting", "dest": "presenting"},
    {"trigger": "stream_to_selection", "source": "collecting", "dest": "selecting"},
    {"trigger": "begin_selecting", "source": "presenting", "dest": "selecting"},
    {"trigger": "begin_submitting", "source": "selecting", "dest": "submitting"},
    {"trigger": "begin_learning", "source": "submitting", "dest": "learning"},
    {"trigger": "finish", "source": "learning", "dest": "done"},
    {"trigger": "cancel", "source": ["presenting", "selecting"], "dest": "cancelled"},
]


class ApprovalResult(str, Enum):
    APPROVED = "approved"
    ALREADY_APPROVED = "already_approved"
    FAILED = "failed"


class ReviewSession:
    """A single review of one pull request at one commit.

    Every line number in ``issues`` refers to ``commit_id_under_review``.
    """

    def __init__(self, ref: PullRequestRef, commit_id: str):
        self.ref = ref
        self.commit_id_under_review = commit_id
        self.issues: list[Issue] = []
        self.selection: Selection | None = None
        self.learned: list[str] = []
        self.cancel_reason: str | None = None
        self.approved = False
        self.approval_error: str | None = None
        self._approval_lock = threading.Lock()

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=Phase.COLLECTING.value,
            auto_transitions=False,
            send_event=True,
            after_state_change="_log_phase_change",
        )

    @property
    def phase(self) -> Phase:
        return Phase(self.state)

    def _log_phase_change(self, event) -> None:
        logger.debug("%s: %s -> %s", self.ref, event.transition.source, event.transition.dest)

    def advance(self, trigger: str) -> None:
        try:
            getattr(self, trigger)()
        except MachineError as e:
            raise PhaseError(f"Cannot {trigger.replace('_', ' ')} while {self.state}") from e

    def require(self, *phases: Phase) -> None:
        if self.phase not in phases:
            allowed = " or ".join(p.value for p in phases)
            raise PhaseError(f"Session for {self.ref} is {self.state}; expected {allowed}")

    def get_issue(self, issue_id: int) -> Issue:
        for issue in self.issues:
            if issue.id == issue_id:
                return issue
        raise KeyError(issue_id)


@dataclass
class SubmissionReport:
    results: list[tuple[Issue, SubmissionState]] = field(default_factory=list)
    interrupted: bool = False

    @property
    def failed(self) -> list[Issue]:
        return [issue for issue, state in self.results if state is SubmissionState.FAILED]


@dataclass
class ReviewSummary:
    total: int
    submitted: int
    fallback: int
    failed: int
    skipped: int
    pending: int
    critical: int

    @classmethod
    def of(cls, issues: Iterable[Issue]) -> ReviewSummary:
        issues = list(issues)
        states = [issue.submission_state for issue in issues]
        return cls(
            total=len(issues),
            submitted=sum(s in (SubmissionState.SUBMITTED, SubmissionState.SUBMITTED_FALLBACK) for s in states),
            fallback=states.count(SubmissionState.SUBMITTED_FALLBACK),
            failed=states.count(SubmissionState.FAILED),
            skipped=states.count(SubmissionState.SKIPPED),
            pending=states.count(SubmissionState.PENDING),
            # Failed issues were selected too; a critical one still blocks approval.
            critical=sum(
                issue.severity is Severity.CRITICAL and issue.submission_state.is_terminal for issue in issues
            ),
        )


class ReviewWorkflow:
    """Drives ReviewSessions against a hosting client and a guideline store."""

    def __init__(
        self,
        client: HostingClient,
        guidelines: GuidelineStore,
        submitter: SubmissionClient | None = None,
    ):
        self._client = client
        self._guidelines = guidelines
        self._submitter = submitter or SubmissionClient(client)
        self._sessions: dict[str, ReviewSession] = {}
        self._sessions_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Session lifecycle                                                    #
    # ------------------------------------------------------------------ #

    def start_session(self, ref: PullRequestRef, commit_id: str | None = None) -> ReviewSession:
        """Create a fresh session pinned to the pull request's current head.

        Raises PhaseError while another session for the same pull request is
        still in progress.
        """
        commit_id = commit_id or self._client.get_head_sha(ref)
        with self._sessions_lock:
            current = self._sessions.get(ref.key)
            if current is not None and not current.phase.is_terminal:
                raise PhaseError(f"A review of {ref} is already {current.state}")
            session = ReviewSession(ref, commit_id)
            self._sessions[ref.key] = session
        logger.info("Started review of %s at %s", ref, commit_id[:7])
        return session

    def delegate_collection(self, session: ReviewSession, agent: Callable[[PullRequestRef], object]):
        """Hand issue collection to an external agent.

        Returns once the launch controller reports the agent has started; the
        session stays in COLLECTING until its issues are handed to collect().
        """
        session.require(Phase.COLLECTING)
        return agent(session.ref)

    def collect(self, session: ReviewSession, issues: Iterable[Issue], interactive: bool = True) -> None:
        """Finish COLLECTING with ``issues``, renumbered 1..n in the given order."""
        session.require(Phase.COLLECTING)
        collected = list(issues)
        for ordinal, issue in enumerate(collected, start=1):
            issue.id = ordinal
        session.issues = collected
        session.advance("finish_collecting" if interactive else "stream_to_selection")

    def present(self, session: ReviewSession) -> tuple[Issue, ...]:
        session.require(Phase.PRESENTING)
        return tuple(session.issues)

    def select(self, session: ReviewSession, expr: str) -> Selection:
        """Apply a selection expression.

        Raises InvalidSelection without changing anything when ``expr`` does
        not parse. A cancellation expression cancels the session.
        """
        session.require(Phase.PRESENTING, Phase.SELECTING)
        if session.selection is not None:
            raise PhaseError(f"A selection was already made for {session.ref}")
        selection = parse_selection(expr, session.issues)
        if selection.cancelled:
            self.cancel(session, "cancelled by operator")
            return selection

        if session.phase is Phase.PRESENTING:
            session.advance("begin_selecting")
        for issue in session.issues:
            if issue.id in selection:
                issue.selected = True
            else:
                issue.mark(SubmissionState.SKIPPED)
        session.selection = selection
        return selection

    def cancel(self, session: ReviewSession, reason: str = "cancelled") -> None:
        session.advance("cancel")
        session.cancel_reason = reason
        logger.info("Review of %s cancelled: %s", session.ref, reason)

    # ------------------------------------------------------------------ #
    # Submission                                                           #
    # ------------------------------------------------------------------ #

    def _check_head(self, session: ReviewSession) -> None:
        actual = self._client.get_head_sha(session.ref)
        if actual != session.commit_id_under_review:
            error = StaleSessionError(session.commit_id_under_review, actual)
            self.cancel(session, str(error))
            raise error

    def submit(
        self,
        session: ReviewSession,
        cancel_event: threading.Event | None = None,
        on_result: Callable[[Issue, SubmissionState], None] | None = None,
    ) -> SubmissionReport:
        """Submit every selected issue that has not reached a terminal state.

        Calling submit() again on an interrupted session resumes it. The
        ``cancel_event`` is honoured only between issues; an in-flight call
        always completes first.
        """
        if session.phase is Phase.SELECTING:
            if session.selection is None:
                raise PhaseError(f"Nothing selected yet for {session.ref}")
            self._check_head(session)
            session.advance("begin_submitting")
        else:
            session.require(Phase.SUBMITTING)

        report = SubmissionReport()
        for issue in session.issues:
            if not issue.selected or issue.submission_state.is_terminal:
                continue
            if cancel_event is not None and cancel_event.is_set():
                report.interrupted = True
                logger.info("Submission for %s interrupted; call submit() again to resume", session.ref)
                return report
            state = self._submitter.submit(session.ref, session.commit_id_under_review, issue)
            report.results.append((issue, state))
            if on_result is not None:
                on_result(issue, state)

        session.advance("begin_learning")
        return report

    # ------------------------------------------------------------------ #
    # Learning                                                             #
    # ------------------------------------------------------------------ #

    def proposed_categories(self, session: ReviewSession, skip_reasons: dict[int, str] | None = None) -> list[str]:
        """Categories derived from skipped issues that the guideline store does not know yet."""
        reasons = skip_reasons or {}
        known = {normalize_category(c) for c in self._guidelines.skip_categories()}
        proposed: list[str] = []
        for issue in session.issues:
            if issue.submission_state is not SubmissionState.SKIPPED:
                continue
            category = categorize(issue, reasons.get(issue.id))
            key = normalize_category(category)
            if key in known:
                continue
            known.add(key)
            proposed.append(category)
        return proposed

    def learn(
        self,
        session: ReviewSession,
        skip_reasons: dict[int, str] | None = None,
        confirm: Callable[[list[str]], bool] | None = None,
    ) -> list[str]:
        """Offer new skip categories and finish the session.

        Categories are only written when ``confirm`` approves them. Returns the
        categories actually added to the guideline store.
        """
        session.require(Phase.LEARNING)
        proposed = self.proposed_categories(session, skip_reasons)
        added: list[str] = []
        if proposed and confirm is not None and confirm(proposed):
            added = self._guidelines.add_skip_categories(proposed)
        session.learned = added
        session.advance("finish")
        logger.info("Review of %s done: %s", session.ref, self.summary(session))
        return added

    # ------------------------------------------------------------------ #
    # Summary and approval                                                 #
    # ------------------------------------------------------------------ #

    def summary(self, session: ReviewSession) -> ReviewSummary:
        return ReviewSummary.of(session.issues)

    def approval_eligible(self, session: ReviewSession) -> bool:
        return session.phase is Phase.DONE and not session.approved and self.summary(session).critical == 0

    def approve(self, session: ReviewSession, body: str = "") -> ApprovalResult:
        """Approve the pull request at most once per session.

        The session's approved flag is checked and set under a lock before the
        hosting call, so a second call (or a concurrent one) never reaches the
        hosting service. A failed call is not retried within the session.
        """
        with session._approval_lock:
            if session.approved:
                return ApprovalResult.ALREADY_APPROVED
            if session.phase is not Phase.DONE:
                raise ApprovalNotAllowed(f"Review of {session.ref} is {session.state}, not done")
            critical = self.summary(session).critical
            if critical:
                raise ApprovalNotAllowed(f"{critical} critical issue(s) were raised on {session.ref}")
            session.approved = True

        try:
            self._client.approve(session.ref, body)
        except (GithubException, OSError) as e:
            session.approval_error = str(e)
            logger.error("Approving %s failed: %s", session.ref, e)
            return ApprovalResult.FAILED
        logger.info("Approved %s", session.ref)
        return ApprovalResult.APPROVED
