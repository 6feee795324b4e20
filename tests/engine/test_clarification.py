# Tests for the clarification engine
"""
Test suite for ClarificationEngine and ClarificationSession.

These tests verify that:
- Sessions start in confirmation or clarification state as appropriate
- Submission is blocked until required answers are valid
- Submitting yields a fresh fingerprint that includes the answers
- Every presented item is audit-logged, and audit failures never surface
"""

from datetime import datetime, timedelta

import pytest

from core.audit.dispatch import BackgroundDispatcher
from core.audit.models import ClarificationResponseType
from core.engine.clarification import (
    ClarificationEngine,
    ClarificationIncompleteError,
    ClarificationState,
)
from core.engine.fingerprint import QuestionFingerprint
from core.engine.models import (
    ClarificationOption,
    ClarificationRequest,
    ConfirmationPrompt,
    FreeformSpec,
    FunnelResult,
)


class SteppingClock:
    """datetime source advanced by hand."""

    def __init__(self):
        self.now = datetime(2025, 1, 15, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def wound_type_request():
    return ClarificationRequest(
        placeholder_id="wound_type",
        prompt_text="Which wound type?",
        options=[
            ClarificationOption(id="pi", label="Pressure Injury", value="Pressure Injury"),
            ClarificationOption(id="dfu", label="Diabetic Foot Ulcer", value="Diabetic Foot Ulcer"),
        ],
        freeform=FreeformSpec(allowed=True, min_chars=2, max_chars=40),
        semantic="clinical_term",
        template_name="Wound Count by Type",
    )


def clinic_request():
    """Free-text only; no options offered."""
    return ClarificationRequest(
        placeholder_id="clinic",
        prompt_text="Which clinic?",
        freeform=FreeformSpec(allowed=True, min_chars=1, max_chars=100),
        semantic="text",
    )


def funnel(clarifications=None, confirmations=None, question="count of wounds at clinic"):
    return FunnelResult(
        question=question,
        clarifications=clarifications if clarifications is not None else [wound_type_request(), clinic_request()],
        confirmations=confirmations or [],
    )


@pytest.fixture
def stepping_clock():
    return SteppingClock()


@pytest.fixture
def engine(audit_sink, terminology, stepping_clock):
    dispatcher = BackgroundDispatcher(max_workers=1, name="test-clarification")
    engine = ClarificationEngine(audit_sink=audit_sink, dispatcher=dispatcher,
                                 terminology=terminology, clock=stepping_clock)
    yield engine
    engine.shutdown()


class TestSessionState:
    """State transitions."""

    def test_starts_in_clarification_without_confirmations(self, engine):
        session = engine.start(funnel(), customer_id="C1")
        assert session.state == ClarificationState.CLARIFICATION

    def test_starts_in_confirmation(self, engine):
        confirmation = ConfirmationPrompt(placeholder_id="window", prompt_text="Last 30 days?",
                                          value="30", confidence=0.75)
        session = engine.start(funnel(clarifications=[], confirmations=[confirmation]), customer_id="C1")
        assert session.state == ClarificationState.CONFIRMATION
        assert "_confirmation" in session.validate()

    def test_accept_confirmations_prefills(self, engine):
        confirmation = ConfirmationPrompt(placeholder_id="window", prompt_text="Last 30 days?", value="30")
        session = engine.start(funnel(clarifications=[], confirmations=[confirmation]), customer_id="C1")
        session.accept_confirmations()
        assert session.state == ClarificationState.CLARIFICATION
        assert session.answers == {"window": "30"}
        assert session.can_submit

    def test_request_changes_makes_editable(self, engine):
        confirmation = ConfirmationPrompt(placeholder_id="window", prompt_text="Last 30 days?", value="30")
        session = engine.start(funnel(clarifications=[], confirmations=[confirmation]), customer_id="C1")
        session.request_changes()
        assert session.answers == {}
        request = session.find("window")
        assert request is not None
        assert request.options[0].value == "30"
        assert session.validate() == {"window": "An answer is required"}

    def test_transition_from_wrong_state(self, engine):
        session = engine.start(funnel(), customer_id="C1")
        with pytest.raises(ValueError):
            session.accept_confirmations()

    def test_unknown_placeholder(self, engine):
        session = engine.start(funnel(), customer_id="C1")
        with pytest.raises(KeyError):
            session.answer("nope", "x")
        with pytest.raises(KeyError):
            session.select_option("wound_type", "nope")


class TestValidation:
    """Answer validation rules."""

    def test_free_text_field_blocks_submission(self, engine):
        """A free-text-only field must be non-empty before submission."""
        session = engine.start(funnel(), customer_id="C1")
        session.select_option("wound_type", "pi")
        assert session.validate() == {"clinic": "An answer is required"}
        with pytest.raises(ClarificationIncompleteError) as exc_info:
            engine.submit(session)
        assert exc_info.value.errors == {"clinic": "An answer is required"}

        session.answer("clinic", "   ")
        assert not session.can_submit
        session.answer("clinic", "North Clinic")
        assert session.can_submit

    def test_character_bounds(self, engine):
        session = engine.start(funnel(), customer_id="C1")
        session.answer("clinic", "North")
        session.answer("wound_type", "x")
        assert session.validate() == {"wound_type": "Must be at least 2 characters"}
        session.answer("wound_type", "y" * 41)
        assert session.validate() == {"wound_type": "Must be at most 40 characters"}

    def test_offered_option_skips_bounds(self, engine):
        session = engine.start(funnel(), customer_id="C1")
        session.answer("clinic", "North")
        session.answer("wound_type", "pi")
        assert session.can_submit

    def test_freeform_not_allowed(self, engine):
        request = wound_type_request()
        request.freeform = FreeformSpec(allowed=False)
        session = engine.start(funnel(clarifications=[request]), customer_id="C1")
        session.answer("wound_type", "venous ulcer")
        assert session.validate() == {"wound_type": "Choose one of the offered options"}

    def test_optional_may_be_empty(self, engine):
        request = clinic_request()
        request.required = False
        session = engine.start(funnel(clarifications=[request]), customer_id="C1")
        assert session.can_submit


class TestSubmission:
    """Submitting answers."""

    def test_fresh_fingerprint_includes_answers(self, engine):
        session = engine.start(funnel(), customer_id="C1", model_id="m1")
        session.select_option("wound_type", "pi")
        session.answer("clinic", "North Clinic")
        submission = engine.submit(session)

        base = QuestionFingerprint.create("count of wounds at clinic", "C1", model_id="m1")
        assert submission.fingerprint != base
        assert submission.fingerprint.key != base.key
        assert submission.fingerprint.clarifications == (
            ("clinic", "north clinic"), ("wound_type", "pressure injury")
        )
        assert submission.answers == {"wound_type": "Pressure Injury", "clinic": "North Clinic"}
        assert session.state == ClarificationState.RESOLVED

    def test_prior_answers_merged(self, engine):
        session = engine.start(funnel(clarifications=[clinic_request()]), customer_id="C1",
                               prior_clarifications={"wound_type": "DFU"})
        session.answer("clinic", "North")
        submission = engine.submit(session)
        assert submission.answers == {"wound_type": "DFU", "clinic": "North"}

    def test_clinical_term_answers_expanded(self, engine):
        session = engine.start(funnel(clarifications=[wound_type_request()]), customer_id="C1")
        session.answer("wound_type", "PI")
        submission = engine.submit(session)
        assert submission.terminology == {
            "PI": ["Pressure Injury", "pressure injury", "pressure ulcer", "bedsore"]
        }

    def test_double_submit_rejected(self, engine):
        session = engine.start(funnel(clarifications=[clinic_request()]), customer_id="C1")
        session.answer("clinic", "North")
        engine.submit(session)
        with pytest.raises(ValueError):
            engine.submit(session)
        with pytest.raises(ValueError):
            session.answer("clinic", "South")


class TestAuditLogging:
    """Audit trail of presented and answered items."""

    def test_presented_items_logged_as_abandoned(self, engine, audit_sink):
        engine.start(funnel(), customer_id="C1")
        engine.dispatcher.flush()
        events = audit_sink.events
        assert [e.placeholder_id for e in events] == ["wound_type", "clinic"]
        assert all(e.response_type == ClarificationResponseType.ABANDONED for e in events)
        assert events[0].options_presented == ["Pressure Injury", "Diabetic Foot Ulcer"]
        assert events[0].template_name == "Wound Count by Type"

    def test_submission_logs_outcomes(self, engine, audit_sink, stepping_clock):
        session = engine.start(funnel(), customer_id="C1")
        stepping_clock.advance(12)
        session.select_option("wound_type", "dfu")
        session.answer("clinic", "North Clinic")
        engine.submit(session)
        engine.dispatcher.flush()

        submitted = audit_sink.batches[-1]
        by_id = {e.placeholder_id: e for e in submitted}
        assert by_id["wound_type"].response_type == ClarificationResponseType.ACCEPTED
        assert by_id["wound_type"].accepted_value == "Diabetic Foot Ulcer"
        assert by_id["clinic"].response_type == ClarificationResponseType.CUSTOM
        assert by_id["clinic"].time_spent_ms == 12000
        assert by_id["clinic"].responded_at == stepping_clock.now

    def test_confirmation_outcomes(self, engine, audit_sink):
        confirmation = ConfirmationPrompt(placeholder_id="window", prompt_text="Last 30 days?", value="30")
        session = engine.start(funnel(clarifications=[], confirmations=[confirmation]), customer_id="C1")
        session.accept_confirmations()
        engine.submit(session)
        engine.dispatcher.flush()
        assert audit_sink.batches[-1][0].response_type == ClarificationResponseType.ACCEPTED

    def test_changed_confirmation_logged_once(self, engine, audit_sink):
        """A confirmation reopened for editing yields one submission event."""
        confirmation = ConfirmationPrompt(placeholder_id="wound_type", prompt_text="Pressure injuries?",
                                          value="Pressure Injury", semantic="clinical_term")
        session = engine.start(funnel(clarifications=[], confirmations=[confirmation]), customer_id="C1")
        session.request_changes()
        session.answer("wound_type", "DFU")
        engine.submit(session)
        engine.dispatcher.flush()

        submitted = audit_sink.batches[-1]
        assert [(e.placeholder_id, e.response_type) for e in submitted] == [
            ("wound_type", ClarificationResponseType.CUSTOM)
        ]
        assert submitted[0].accepted_value == "DFU"

    def test_audit_failure_never_surfaces(self, terminology, stepping_clock, failing_sink):
        sink = failing_sink
        engine = ClarificationEngine(audit_sink=sink, terminology=terminology, clock=stepping_clock)
        try:
            session = engine.start(funnel(clarifications=[clinic_request()]), customer_id="C1")
            session.answer("clinic", "North")
            submission = engine.submit(session)
            engine.dispatcher.flush()
        finally:
            engine.shutdown()
        assert submission.answers == {"clinic": "North"}
        assert sink.attempts == 2

    def test_no_sink(self, terminology):
        engine = ClarificationEngine(terminology=terminology)
        session = engine.start(funnel(clarifications=[clinic_request()]), customer_id="C1")
        session.answer("clinic", "North")
        assert engine.submit(session).answers == {"clinic": "North"}
        assert engine.dispatcher is None
