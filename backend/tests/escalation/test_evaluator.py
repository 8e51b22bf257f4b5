"""Pruebas del evaluador de estado de conversaciones."""

from datetime import datetime, timedelta, timezone

from centinela.escalation.evaluator import ConversationStateEvaluator, elapsed_whole_minutes
from centinela.models.conversation import ConversationState, MessageRecord

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _message(role: str, at: datetime, sender: str | None = None) -> MessageRecord:
    return MessageRecord(
        msg_id=f"{role}-{at.timestamp():.0f}",
        sender_id=sender or ("wmcliente" if role == "external" else "ana"),
        sender_role=role,
        content="hola",
        occurred_at=at,
    )


def _state(**kwargs) -> ConversationState:
    return ConversationState(conversation_id="wrchat1", name="Grupo", owner="ana", **kwargs)


def test_no_external_message_short_circuits() -> None:
    evaluator = ConversationStateEvaluator([10, 30, 60])
    result = evaluator.evaluate(_state(last_message=_message("staff", T0)), T0 + timedelta(hours=5))
    assert result.new_level == 0
    assert result.should_dispatch is False
    assert result.reason == "no_external_message"


def test_unanswered_message_escalates() -> None:
    external = _message("external", T0)
    state = _state(last_message=external, last_external_message=external)
    result = ConversationStateEvaluator([10, 30, 60]).evaluate(state, T0 + timedelta(minutes=31))
    assert result.new_level == 2
    assert result.should_dispatch is True
    assert result.elapsed_minutes == 31


def test_second_evaluation_with_stored_level_does_not_dispatch() -> None:
    external = _message("external", T0)
    evaluator = ConversationStateEvaluator([10, 30, 60])
    state = _state(last_message=external, last_external_message=external)
    now = T0 + timedelta(minutes=31)

    first = evaluator.evaluate(state, now)
    stored = state.model_copy(update={"alert_level": first.new_level})
    second = evaluator.evaluate(stored, now)

    assert second.new_level == first.new_level
    assert second.should_dispatch is False
    assert not second.level_changed


def test_staff_reply_resets_any_level() -> None:
    external = _message("external", T0)
    reply = _message("staff", T0 + timedelta(minutes=40))
    state = _state(
        last_message=reply,
        last_staff_message=reply,
        last_external_message=external,
        alert_level=3,
    )
    result = ConversationStateEvaluator([10, 30, 60]).evaluate(state, T0 + timedelta(hours=6))
    assert result.new_level == 0
    assert result.should_dispatch is False
    assert result.reason == "staff_replied"
    assert result.level_changed


def test_staff_reply_at_same_instant_counts_as_reply() -> None:
    external = _message("external", T0)
    reply = _message("staff", T0)
    state = _state(last_staff_message=reply, last_external_message=external, alert_level=1)
    assert ConversationStateEvaluator([10]).evaluate(state, T0 + timedelta(hours=1)).new_level == 0


def test_older_staff_message_does_not_reset() -> None:
    earlier = _message("staff", T0 - timedelta(minutes=5))
    external = _message("external", T0)
    state = _state(
        last_message=external, last_staff_message=earlier, last_external_message=external
    )
    result = ConversationStateEvaluator([10, 30, 60]).evaluate(state, T0 + timedelta(minutes=61))
    assert result.new_level == 3


def test_clock_is_used_when_now_is_omitted() -> None:
    external = _message("external", T0)
    state = _state(last_external_message=external)
    evaluator = ConversationStateEvaluator([10, 30], clock=lambda: T0 + timedelta(minutes=12))
    assert evaluator.evaluate(state).new_level == 1


def test_elapsed_minutes_are_truncated() -> None:
    assert elapsed_whole_minutes(T0, T0 + timedelta(minutes=29, seconds=59)) == 29
    naive = T0.replace(tzinfo=None)
    assert elapsed_whole_minutes(naive, T0 + timedelta(minutes=3)) == 3
