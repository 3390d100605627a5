"""Unit tests for the rate-limited delivery queue.

Tests the DeliveryQueue including:
- Enqueue stamping and defaults
- Exponential retry backoff and drop after max_retries
- Throttling (not counted as a retry) and permanent rejections
- Batching with a pause between drain iterations
- Status, clear and background draining
"""

from datetime import timedelta

import pytest

from listing_notifier.config.models import DeliveryConfig
from listing_notifier.delivery import (
    DeliveryError,
    DeliveryQueue,
    MessageKind,
    MessagePayload,
    QueuedMessage,
    RecipientUnavailableError,
    ThrottledError,
)
from tests.helpers import BASE_TIME, FakeClock, RecordingMessenger


def make_message(chat_id: str = "100", user_id: int = 1, **kwargs) -> QueuedMessage:
    kind = kwargs.pop("kind", MessageKind.PHOTO)
    return QueuedMessage(
        user_id=user_id,
        chat_id=chat_id,
        payload=MessagePayload(kind=kind, content="https://img.example/x.png", options={"caption": "hi"}),
        **kwargs,
    )


def always(exc):
    return lambda attempt: exc


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def messenger(clock):
    return RecordingMessenger(clock)


@pytest.fixture
def queue(messenger, clock):
    return DeliveryQueue(
        messenger,
        batch_size=25,
        retry_delay=5.0,
        max_retries=3,
        batch_processing_delay=1.0,
        autostart=False,
        clock=clock,
        sleep=clock.sleep,
    )


class TestEnqueue:
    """Tests for enqueue stamping."""

    def test_enqueue_stamps_id_and_timestamps(self, queue, clock):
        """Test enqueue assigns an id, resets retry_count and sets created_at."""
        message = make_message(retry_count=5)

        ids = queue.enqueue(message)

        assert len(ids) == 1
        assert ids[0].startswith("msg_")
        assert message.id == ids[0]
        assert message.retry_count == 0
        assert message.created_at == clock()
        assert message.scheduled_at == clock()
        assert message.max_retries == 3

    def test_enqueue_keeps_explicit_schedule_and_retry_budget(self, queue, clock):
        """Test caller-provided scheduled_at and max_retries survive enqueue."""
        later = clock() + timedelta(minutes=5)
        message = make_message(scheduled_at=later, max_retries=0)

        queue.enqueue(message)

        assert message.scheduled_at == later
        assert message.max_retries == 0

    def test_enqueue_list_preserves_order(self, queue):
        """Test enqueueing a list appends messages in order."""
        messages = [make_message(chat_id=str(i)) for i in range(3)]

        ids = queue.enqueue(messages)

        assert [m.id for m in queue.pending()] == ids
        assert [m.chat_id for m in queue.pending()] == ["0", "1", "2"]

    def test_enqueue_without_autostart_does_not_process(self, queue, messenger):
        """Test nothing is sent until drain when autostart is off."""
        queue.enqueue(make_message())

        assert messenger.sent == []
        assert queue.get_status().is_processing is False


class TestDrain:
    """Tests for the drain loop."""

    def test_successful_send_empties_queue(self, queue, messenger):
        """Test a single message is delivered and the queue ends empty."""
        queue.enqueue(make_message(chat_id="7"))

        queue.drain()

        assert len(messenger.sent) == 1
        kind, chat_id, content, options = messenger.sent[0]
        assert kind == "photo"
        assert chat_id == "7"
        assert options == {"caption": "hi"}
        status = queue.get_status()
        assert status.queue_size == 0
        assert status.is_processing is False

    def test_message_kind_selects_client_method(self, queue, messenger):
        """Test text and document payloads use the matching client call."""
        queue.enqueue([make_message(chat_id="1", kind=MessageKind.TEXT),
                       make_message(chat_id="2", kind=MessageKind.DOCUMENT)])

        queue.drain()

        assert sorted(kind for kind, *_ in messenger.sent) == ["document", "text"]

    def test_retry_backoff_doubles_and_drops_after_max_retries(self, queue, messenger, clock):
        """Test a always-failing message is attempted max_retries + 1 times with doubling gaps."""
        messenger.fail("42", always(DeliveryError("boom", status_code=500)))
        queue.enqueue(make_message(chat_id="42"))

        queue.drain()

        attempts = messenger.attempts_for("42")
        assert len(attempts) == 4
        gaps = [(b - a).total_seconds() for a, b in zip(attempts, attempts[1:])]
        assert gaps == [5.0, 10.0, 20.0]
        assert queue.get_status().queue_size == 0
        assert messenger.sent == []

    def test_unexpected_exception_takes_retry_path(self, queue, messenger):
        """Test a non-delivery exception is retried like a transient failure."""
        messenger.fail("9", lambda attempt: ValueError("bad json") if attempt == 0 else None)
        queue.enqueue(make_message(chat_id="9"))

        queue.drain()

        assert len(messenger.attempts_for("9")) == 2
        assert len(messenger.sent) == 1

    def test_zero_retry_budget_drops_after_first_failure(self, queue, messenger):
        """Test max_retries=0 means exactly one attempt."""
        messenger.fail("5", always(DeliveryError("down")))
        queue.enqueue(make_message(chat_id="5", max_retries=0))

        queue.drain()

        assert len(messenger.attempts_for("5")) == 1

    def test_recipient_unavailable_is_dropped_without_retry(self, queue, messenger):
        """Test a 403-style rejection is attempted once and dropped."""
        messenger.fail("13", always(RecipientUnavailableError("blocked", status_code=403)))
        queue.enqueue(make_message(chat_id="13"))

        queue.drain()

        assert len(messenger.attempts_for("13")) == 1
        assert queue.get_status().queue_size == 0

    def test_one_rejected_recipient_does_not_block_others(self, queue, messenger):
        """Test three recipients where one has blocked the bot: the other two are delivered."""
        messenger.fail("B", always(RecipientUnavailableError("blocked", status_code=403)))
        queue.enqueue([make_message(chat_id="A", user_id=1),
                       make_message(chat_id="B", user_id=2),
                       make_message(chat_id="C", user_id=3)])

        queue.drain()

        assert sorted(chat for _, chat, _, _ in messenger.sent) == ["A", "C"]
        assert len(messenger.attempts_for("B")) == 1
        assert queue.get_status().queue_size == 0

    def test_throttled_messages_do_not_consume_retries(self, queue, messenger):
        """Test repeated throttling beyond max_retries still ends in delivery."""
        messenger.fail("T", lambda attempt: ThrottledError("slow down", retry_after=2) if attempt < 6 else None)
        queue.enqueue(make_message(chat_id="T", max_retries=1))

        queue.drain()

        assert len(messenger.attempts_for("T")) == 7
        assert len(messenger.sent) == 1

    def test_batch_size_plus_one_takes_two_iterations(self, queue, messenger, clock):
        """Test 26 messages with batch_size 25 are sent in two batches one delay apart."""
        queue.enqueue([make_message(chat_id=str(i), user_id=i) for i in range(26)])

        queue.drain()

        assert len(messenger.sent) == 26
        assert clock.sleeps == [1.0]
        times = sorted(at for _, at in messenger.attempts)
        assert times[:25] == [BASE_TIME] * 25
        assert times[25] == BASE_TIME + timedelta(seconds=1)

    def test_drain_on_empty_queue_returns_immediately(self, queue, clock):
        """Test draining an empty queue neither sends nor sleeps."""
        queue.drain()

        assert clock.sleeps == []
        assert queue.get_status().is_processing is False


class TestProcessBatch:
    """Tests for a single drain iteration."""

    def test_throttle_reschedules_without_counting(self, queue, messenger, clock):
        """Test a throttled message keeps retry_count 0 and waits retry_after."""
        messenger.fail("T", always(ThrottledError("slow down", retry_after=7)))
        queue.enqueue(make_message(chat_id="T"))

        result = queue.process_batch()

        assert result.throttled == 1
        pending = queue.pending()
        assert len(pending) == 1
        assert pending[0].retry_count == 0
        assert pending[0].scheduled_at == clock() + timedelta(seconds=7)

    def test_transient_failure_counts_and_schedules_backoff(self, queue, messenger, clock):
        """Test the first failure schedules a retry after retry_delay."""
        messenger.fail("X", always(DeliveryError("boom")))
        queue.enqueue(make_message(chat_id="X"))

        result = queue.process_batch()

        assert result.retried == 1
        message = queue.pending()[0]
        assert message.retry_count == 1
        assert message.scheduled_at == clock() + timedelta(seconds=5)

    def test_deferred_messages_return_to_front_in_order(self, queue, messenger, clock):
        """Test not-yet-due messages keep their order at the head of the queue."""
        first = make_message(chat_id="1", scheduled_at=clock() + timedelta(seconds=10))
        second = make_message(chat_id="2", scheduled_at=clock() + timedelta(seconds=20))
        ready = make_message(chat_id="3")
        queue.enqueue([first, second, ready])
        late = make_message(chat_id="4", scheduled_at=clock() + timedelta(seconds=30))
        queue.enqueue(late)

        queue.batch_size = 3
        result = queue.process_batch()

        assert result.sent == 1
        assert result.deferred == 2
        assert [m.chat_id for m in queue.pending()] == ["1", "2", "4"]


class TestStatusAndClear:
    """Tests for status reporting and clearing."""

    def test_status_reports_earliest_future_schedule(self, queue, clock):
        """Test next_scheduled_at is the earliest scheduled_at in the future."""
        queue.enqueue([
            make_message(chat_id="1"),
            make_message(chat_id="2", scheduled_at=clock() + timedelta(seconds=90)),
            make_message(chat_id="3", scheduled_at=clock() + timedelta(seconds=30)),
        ])

        status = queue.get_status()

        assert status.queue_size == 3
        assert status.is_processing is False
        assert status.next_scheduled_at == clock() + timedelta(seconds=30)

    def test_status_without_future_messages(self, queue):
        """Test next_scheduled_at is None when everything is due."""
        queue.enqueue(make_message())

        assert queue.get_status().next_scheduled_at is None

    def test_clear_discards_pending_messages(self, queue, messenger):
        """Test clear returns the number of discarded messages."""
        queue.enqueue([make_message(chat_id=str(i)) for i in range(3)])

        assert queue.clear() == 3
        assert queue.get_status().queue_size == 0

        queue.drain()
        assert messenger.sent == []


class TestBackgroundDrain:
    """Tests for the autostarted drain thread."""

    def test_enqueue_starts_background_drain(self, messenger, clock):
        """Test enqueue with autostart delivers on a background thread."""
        queue = DeliveryQueue(messenger, autostart=True, clock=clock, sleep=clock.sleep)

        queue.enqueue(make_message(chat_id="bg"))

        assert queue.wait_until_idle(timeout=5)
        assert [chat for _, chat, _, _ in messenger.sent] == ["bg"]
        assert queue.get_status().is_processing is False

    def test_later_enqueue_restarts_drain(self, messenger, clock):
        """Test a new enqueue after the loop went idle starts it again."""
        queue = DeliveryQueue(messenger, autostart=True, clock=clock, sleep=clock.sleep)

        queue.enqueue(make_message(chat_id="a"))
        assert queue.wait_until_idle(timeout=5)
        queue.enqueue(make_message(chat_id="b"))
        assert queue.wait_until_idle(timeout=5)

        assert sorted(chat for _, chat, _, _ in messenger.sent) == ["a", "b"]


class TestFromConfig:
    """Tests for building a queue from configuration."""

    def test_from_config_uses_delivery_settings(self, messenger):
        """Test durations are converted to seconds."""
        config = DeliveryConfig(batch_size=10, retry_delay="2s", max_retries=5, batch_processing_delay="1s")

        queue = DeliveryQueue.from_config(messenger, config, autostart=False)

        assert queue.batch_size == 10
        assert queue.retry_delay == 2.0
        assert queue.max_retries == 5
        assert queue.batch_processing_delay == 1.0
        assert queue.autostart is False
