"""
Unit tests for message splitting and the DeliveryService.

Tests cover:
- Line-accumulating split within the size limit
- Word wrap for overlong lines, hard split only for overlong words
- Prefixed units staying within the limit
- Delivery failures never raising
"""

import pytest

from scribe.services.delivery.manager import (
    RECORDING_PREFIX,
    SUMMARY_PREFIX,
    TRANSCRIPT_PREFIX,
    ReportSink,
    split_message,
)


class RecordingSink(ReportSink):
    """Report sink that keeps every message it receives."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: list[tuple[str, list[str] | None]] = []

    async def report(self, message: str, attachments: list[str] | None = None) -> None:
        if self.fail:
            raise ConnectionError("channel is gone")
        self.messages.append((message, attachments))


@pytest.fixture
def delivery_service(services_manager, test_config):
    test_config.message_max_length = 100
    return services_manager.delivery_service_manager


# -------------------------------------------------------------- #
# split_message
# -------------------------------------------------------------- #


@pytest.mark.unit
class TestSplitMessage:
    def test_short_text_is_one_unit(self):
        assert split_message("hello world", 2000) == ["hello world"]

    def test_empty_text_has_no_units(self):
        assert split_message("", 2000) == []

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            split_message("text", 0)

    def test_lines_accumulate_until_full(self):
        assert split_message("a\nb\nc", 3) == ["a\nb", "c"]

    def test_units_rejoin_to_original(self):
        text = "\n".join(f"line {i:03d} of the meeting transcript" for i in range(50))

        units = split_message(text, 200)

        assert len(units) > 1
        assert all(len(unit) <= 200 for unit in units)
        assert "\n".join(units) == text

    def test_blank_lines_preserved(self):
        assert split_message("**alice:**\nhi\n\n**bob:**\nhey", 2000) == [
            "**alice:**\nhi\n\n**bob:**\nhey"
        ]

    def test_overlong_line_is_word_wrapped(self):
        line = " ".join(["word"] * 50)

        units = split_message(line, 20)

        assert all(len(unit) <= 20 for unit in units)
        assert all(token == "word" for unit in units for token in unit.split())
        assert sum(len(unit.split()) for unit in units) == 50

    def test_wrapped_line_keeps_indentation(self):
        line = "    " + " ".join(["word"] * 6)

        assert split_message(line, 12) == ["    word", "word word", "word word", "word"]

    def test_overlong_word_is_hard_split(self):
        assert split_message("x" * 45, 20) == ["x" * 20, "x" * 20, "x" * 5]

    def test_overlong_word_between_normal_words(self):
        units = split_message("start " + "y" * 25 + " end", 10)

        assert all(len(unit) <= 10 for unit in units)
        assert "".join(units).replace("\n", "").replace(" ", "") == "start" + "y" * 25 + "end"


# -------------------------------------------------------------- #
# DeliveryService
# -------------------------------------------------------------- #


@pytest.mark.unit
class TestDeliveryService:
    async def test_report_without_sink(self, delivery_service):
        assert await delivery_service.report(None, "nobody listening") is False

    async def test_report_failure_does_not_raise(self, delivery_service):
        sink = RecordingSink(fail=True)

        assert await delivery_service.report(sink, "hello") is False
        assert await delivery_service.deliver_transcript(sink, "some text") is False

    async def test_transcript_units_are_prefixed_and_bounded(self, delivery_service):
        sink = RecordingSink()
        transcript = "\n".join(f"**speaker {i}:**\nsaid something useful" for i in range(20))

        assert await delivery_service.deliver_transcript(sink, transcript) is True

        assert len(sink.messages) > 1
        for message, attachments in sink.messages:
            assert message.startswith(f"{TRANSCRIPT_PREFIX}\n")
            assert len(message) <= 100
            assert attachments is None

        bodies = [m[len(TRANSCRIPT_PREFIX) + 1 :] for m, _ in sink.messages]
        assert "\n".join(bodies) == transcript

    async def test_summary_prefix(self, delivery_service):
        sink = RecordingSink()

        await delivery_service.deliver_summary(sink, "Decisions were made.")

        assert sink.messages == [(f"{SUMMARY_PREFIX}\nDecisions were made.", None)]

    async def test_blank_units_are_not_sent(self, delivery_service):
        sink = RecordingSink()

        await delivery_service.deliver_notice(sink, "   ")

        assert sink.messages == []

    async def test_recording_attachment(self, delivery_service):
        sink = RecordingSink()

        assert await delivery_service.deliver_recording(sink, "alice", "/tmp/alice.mp3") is True

        assert sink.messages == [(f"{RECORDING_PREFIX} alice", ["/tmp/alice.mp3"])]
