# InsightGen - Clarification Engine
# ==================================
"""
Clarification Engine
====================
Drives the funnel dialogue that follows a FunnelResult.

A pending resolution moves through:

    confirmation  -> only when the generator produced confirmations
    clarification -> user answers each ClarificationRequest
    resolved      -> every required answer present; ready to re-enter resolution

Accepting the confirmations pre-fills their values as answers; requesting
changes moves on without pre-fill and turns each confirmation into an
editable clarification.

Every presented item is audit-logged straight away as "abandoned". On
submission each item is logged again with its actual outcome ("accepted" when
the answer is one of the offered options, otherwise "custom"), the time spent
and the value. Audit writes are fire-and-forget.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from core.audit.dispatch import BackgroundDispatcher
from core.audit.models import ClarificationAuditEvent, ClarificationResponseType
from core.audit.service import AuditSink

from .fingerprint import QuestionFingerprint
from .models import (
    ClarificationOption,
    ClarificationRequest,
    ConfirmationPrompt,
    FreeformSpec,
    FunnelResult,
)
from .terminology import TerminologyResolver

logger = logging.getLogger(__name__)

CLINICAL_TERM_SEMANTIC = "clinical_term"


class ClarificationState(str, Enum):
    CONFIRMATION = "confirmation"
    CLARIFICATION = "clarification"
    RESOLVED = "resolved"


class ClarificationIncompleteError(ValueError):
    """Submission attempted while answers are missing or invalid."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        detail = "; ".join(f"{k}: {v}" for k, v in errors.items())
        super().__init__(f"Clarification incomplete ({detail})")


@dataclass
class ClarificationSubmission:
    """Answers ready to be merged into a fresh resolution attempt."""
    session_id: str
    question: str
    customer_id: str
    answers: Dict[str, Any]
    fingerprint: QuestionFingerprint
    model_id: Optional[str] = None
    schema_version: Optional[str] = None
    prompt_version: Optional[str] = None
    terminology: Dict[str, List[str]] = field(default_factory=dict)


class ClarificationSession:
    """
    One pending resolution awaiting user input.

    Created by ClarificationEngine.start; not persisted.
    """

    def __init__(self, result: FunnelResult, customer_id: str,
                 model_id: Optional[str] = None,
                 prior_clarifications: Optional[Mapping[str, Any]] = None,
                 schema_version: Optional[str] = None,
                 prompt_version: Optional[str] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.id = uuid.uuid4().hex
        self.question = result.question
        self.customer_id = customer_id
        self.model_id = model_id
        self.schema_version = schema_version
        self.prompt_version = prompt_version
        self.prior_clarifications: Dict[str, Any] = dict(prior_clarifications or {})
        self.clarifications: List[ClarificationRequest] = list(result.clarifications)
        self.confirmations: List[ConfirmationPrompt] = list(result.confirmations)
        self.template_name = result.template_name
        self.answers: Dict[str, str] = {}
        self.presented_at: Dict[str, datetime] = {}
        self._clock = clock
        self.state = (ClarificationState.CONFIRMATION if self.confirmations
                      else ClarificationState.CLARIFICATION)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def accept_confirmations(self) -> None:
        """Accept every inferred value and move on to clarification."""
        self._require_state(ClarificationState.CONFIRMATION)
        for confirmation in self.confirmations:
            self.answers.setdefault(confirmation.placeholder_id, confirmation.value)
        self.state = ClarificationState.CLARIFICATION
        logger.debug(f"Session {self.id[:8]}: confirmations accepted")

    def request_changes(self) -> None:
        """Reject the inferred values; each becomes an editable clarification."""
        self._require_state(ClarificationState.CONFIRMATION)
        asked = {c.placeholder_id for c in self.clarifications}
        for confirmation in self.confirmations:
            if confirmation.placeholder_id in asked:
                continue
            label = confirmation.display_label or confirmation.value
            self.clarifications.append(ClarificationRequest(
                placeholder_id=confirmation.placeholder_id,
                prompt_text=confirmation.prompt_text,
                options=[ClarificationOption(id=confirmation.value, label=label, value=confirmation.value)],
                freeform=FreeformSpec(allowed=True),
                semantic=confirmation.semantic,
                template_name=self.template_name,
            ))
        self.state = ClarificationState.CLARIFICATION
        logger.debug(f"Session {self.id[:8]}: changes requested")

    def answer(self, placeholder_id: str, value: Optional[str]) -> None:
        """Set (or clear, with None/empty) the answer to a clarification."""
        if self.state == ClarificationState.RESOLVED:
            raise ValueError("Session already resolved")
        if self.find(placeholder_id) is None:
            raise KeyError(f"Unknown clarification '{placeholder_id}'")
        cleaned = (value or "").strip()
        if cleaned:
            self.answers[placeholder_id] = cleaned
        else:
            self.answers.pop(placeholder_id, None)

    def select_option(self, placeholder_id: str, option_id: str) -> None:
        request = self.find(placeholder_id)
        if request is None:
            raise KeyError(f"Unknown clarification '{placeholder_id}'")
        option = next((o for o in request.options if o.id == option_id), None)
        if option is None:
            raise KeyError(f"Unknown option '{option_id}' for '{placeholder_id}'")
        self.answer(placeholder_id, option.value)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def items(self) -> List[Any]:
        """Clarifications, then confirmations not since turned into clarifications."""
        asked = {c.placeholder_id for c in self.clarifications}
        return self.clarifications + [c for c in self.confirmations if c.placeholder_id not in asked]

    def find(self, placeholder_id: str) -> Optional[ClarificationRequest]:
        return next((c for c in self.clarifications if c.placeholder_id == placeholder_id), None)

    def missing_required(self) -> List[str]:
        return [c.placeholder_id for c in self.clarifications
                if c.required and not self.answers.get(c.placeholder_id, "").strip()]

    def validate(self) -> Dict[str, str]:
        """
        Per-placeholder validation messages; empty when submittable.

        Free-text answers (those not matching an offered option) must respect
        the declared character bounds.
        """
        errors: Dict[str, str] = {}
        if self.state == ClarificationState.CONFIRMATION:
            errors['_confirmation'] = "Confirmations must be accepted or changed first"

        for request in self.clarifications:
            value = self.answers.get(request.placeholder_id, "").strip()
            if not value:
                if request.required:
                    errors[request.placeholder_id] = "An answer is required"
                continue
            if request.option_for_value(value) is not None:
                continue

            freeform = request.freeform
            if freeform is None and request.options:
                errors[request.placeholder_id] = "Choose one of the offered options"
                continue
            if freeform is not None and not freeform.allowed:
                errors[request.placeholder_id] = "Choose one of the offered options"
                continue
            if freeform is not None and freeform.min_chars is not None and len(value) < freeform.min_chars:
                errors[request.placeholder_id] = f"Must be at least {freeform.min_chars} characters"
            elif freeform is not None and freeform.max_chars is not None and len(value) > freeform.max_chars:
                errors[request.placeholder_id] = f"Must be at most {freeform.max_chars} characters"
        return errors

    @property
    def can_submit(self) -> bool:
        return not self.validate()

    def merged_answers(self) -> Dict[str, Any]:
        """Prior clarification answers overlaid with this session's answers."""
        merged = dict(self.prior_clarifications)
        merged.update(self.answers)
        return merged

    def _require_state(self, state: ClarificationState) -> None:
        if self.state != state:
            raise ValueError(f"Session is in '{self.state.value}', expected '{state.value}'")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.id,
            'question': self.question,
            'state': self.state.value,
            'clarifications': [c.to_dict() for c in self.clarifications],
            'confirmations': [c.to_dict() for c in self.confirmations],
            'answers': dict(self.answers),
            'missing_required': self.missing_required(),
        }


class ClarificationEngine:
    """
    Starts and completes clarification sessions.

    Example:
        engine = ClarificationEngine(audit_sink=AuditService(), terminology=resolver)
        session = engine.start(funnel_result, customer_id="C1")
        session.answer("wound_type", "PI")
        submission = engine.submit(session)
        result = orchestrator.continue_with_answers(submission)
    """

    def __init__(self, audit_sink: Optional[AuditSink] = None,
                 dispatcher: Optional[BackgroundDispatcher] = None,
                 terminology: Optional[TerminologyResolver] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.audit_sink = audit_sink
        # One worker keeps presentation events ahead of their outcomes
        self.dispatcher = dispatcher or (
            BackgroundDispatcher(max_workers=1, name="clarification") if audit_sink else None
        )
        self.terminology = terminology
        self._clock = clock

    def start(self, result: FunnelResult, customer_id: str,
              model_id: Optional[str] = None,
              prior_clarifications: Optional[Mapping[str, Any]] = None,
              schema_version: Optional[str] = None,
              prompt_version: Optional[str] = None) -> ClarificationSession:
        """Open a session for a funnel result and log every presented item."""
        session = ClarificationSession(
            result, customer_id, model_id=model_id, prior_clarifications=prior_clarifications,
            schema_version=schema_version, prompt_version=prompt_version, clock=self._clock,
        )
        now = self._clock()
        for item in session.items():
            session.presented_at[item.placeholder_id] = now

        self._log([
            self._event(session, item, ClarificationResponseType.ABANDONED, None, None)
            for item in session.items()
        ])
        logger.info(f"Clarification session {session.id[:8]} started "
                    f"({len(session.clarifications)} clarification(s), "
                    f"{len(session.confirmations)} confirmation(s), state={session.state.value})")
        return session

    def submit(self, session: ClarificationSession) -> ClarificationSubmission:
        """
        Complete a session.

        Raises:
            ClarificationIncompleteError: required answers missing or invalid
        """
        if session.state == ClarificationState.RESOLVED:
            raise ValueError("Session already submitted")
        errors = session.validate()
        if errors:
            raise ClarificationIncompleteError(errors)

        responded_at = self._clock()
        events = []
        for item in session.items():
            value = session.answers.get(item.placeholder_id)
            if value is None:
                continue
            if isinstance(item, ClarificationRequest):
                response = (ClarificationResponseType.ACCEPTED if item.option_for_value(value)
                            else ClarificationResponseType.CUSTOM)
            else:
                response = (ClarificationResponseType.ACCEPTED if value == item.value
                            else ClarificationResponseType.CUSTOM)
            events.append(self._event(session, item, response, value, responded_at))
        self._log(events)

        session.state = ClarificationState.RESOLVED
        answers = session.merged_answers()

        terminology: Dict[str, List[str]] = {}
        if self.terminology is not None:
            for request in session.clarifications:
                value = session.answers.get(request.placeholder_id)
                if value and request.semantic == CLINICAL_TERM_SEMANTIC:
                    terminology[value] = self.terminology.expand_term(value, session.customer_id)

        fingerprint = QuestionFingerprint.create(
            session.question, session.customer_id, model_id=session.model_id,
            clarifications=answers, schema_version=session.schema_version,
            prompt_version=session.prompt_version,
        )
        logger.info(f"Clarification session {session.id[:8]} resolved "
                    f"({len(session.answers)} answer(s), key={fingerprint.digest[:8]})")
        return ClarificationSubmission(
            session_id=session.id,
            question=session.question,
            customer_id=session.customer_id,
            answers=answers,
            fingerprint=fingerprint,
            model_id=session.model_id,
            schema_version=session.schema_version,
            prompt_version=session.prompt_version,
            terminology=terminology,
        )

    # =========================================================================
    # AUDIT
    # =========================================================================

    def _event(self, session: ClarificationSession, item: Any,
               response: ClarificationResponseType, value: Optional[str],
               responded_at: Optional[datetime]) -> ClarificationAuditEvent:
        presented_at = session.presented_at.get(item.placeholder_id) or self._clock()
        if isinstance(item, ClarificationRequest):
            options = [o.label for o in item.options]
            template_name = item.template_name or session.template_name
            template_summary = item.template_summary
        else:
            options = [item.display_label or item.value]
            template_name = session.template_name
            template_summary = None

        time_spent = None
        if responded_at is not None:
            time_spent = int((responded_at - presented_at).total_seconds() * 1000)

        return ClarificationAuditEvent(
            session_id=session.id,
            customer_id=session.customer_id,
            question=session.question,
            placeholder_id=item.placeholder_id,
            placeholder_semantic=item.semantic,
            prompt_text=item.prompt_text,
            options_presented=options,
            response_type=response,
            accepted_value=value,
            time_spent_ms=time_spent,
            presented_at=presented_at,
            responded_at=responded_at,
            template_name=template_name,
            template_summary=template_summary,
        )

    def _log(self, events: List[ClarificationAuditEvent]) -> None:
        if not events or self.audit_sink is None or self.dispatcher is None:
            return
        self.dispatcher.submit(self.audit_sink.log_batch, events, description="clarification audit")

    def shutdown(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.shutdown()
