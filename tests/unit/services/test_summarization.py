"""Unit tests for the SummarizationService and its prompts."""

import asyncio

import pytest

from scribe.services.summarization.manager import SummaryStatus
from scribe.services.summarization.prompts import SUMMARY_SYSTEM_MESSAGE, build_summary_prompts


@pytest.fixture
def summarization_service(services_manager):
    return services_manager.summarization_service_manager


# -------------------------------------------------------------- #
# Prompts
# -------------------------------------------------------------- #


@pytest.mark.unit
class TestBuildSummaryPrompts:
    def test_transcript_in_user_prompt(self, sample_transcript):
        system, user = build_summary_prompts(sample_transcript)

        assert system == SUMMARY_SYSTEM_MESSAGE
        assert sample_transcript in user
        assert "Action items" in user

    def test_context_appended_to_system_prompt(self, sample_transcript):
        system, _ = build_summary_prompts(sample_transcript, "  Platform team weekly sync  ")

        assert system.startswith(SUMMARY_SYSTEM_MESSAGE)
        assert system.endswith("Platform team weekly sync")

    def test_blank_context_ignored(self, sample_transcript):
        system, _ = build_summary_prompts(sample_transcript, "   ")

        assert system == SUMMARY_SYSTEM_MESSAGE


# -------------------------------------------------------------- #
# Summarize
# -------------------------------------------------------------- #


@pytest.mark.unit
class TestSummarize:
    async def test_summarized(self, summarization_service, test_summarizer_client, sample_transcript):
        test_summarizer_client.set_response("  The team agreed on a timeline.  ")

        outcome = await summarization_service.summarize(sample_transcript)

        assert outcome.status == SummaryStatus.SUMMARIZED
        assert outcome.text == "The team agreed on a timeline."
        assert len(test_summarizer_client.prompts) == 1
        assert sample_transcript in test_summarizer_client.prompts[0]

    @pytest.mark.parametrize("transcript", ["", "   \n\n  "])
    async def test_blank_transcript_skipped(self, summarization_service, test_summarizer_client, transcript):
        outcome = await summarization_service.summarize(transcript)

        assert outcome.status == SummaryStatus.SKIPPED_NO_TRANSCRIPT
        assert outcome.text is None
        assert test_summarizer_client.prompts == []

    async def test_summarizer_error_is_failed(
        self, summarization_service, test_summarizer_client, sample_transcript
    ):
        test_summarizer_client.set_error(asyncio.TimeoutError())

        outcome = await summarization_service.summarize(sample_transcript)

        assert outcome.status == SummaryStatus.FAILED
        assert outcome.text is None
        # Single attempt, never retried
        assert len(test_summarizer_client.prompts) == 1

    async def test_empty_response_is_failed(
        self, summarization_service, test_summarizer_client, sample_transcript
    ):
        test_summarizer_client.set_response("")

        outcome = await summarization_service.summarize(sample_transcript)

        assert outcome.status == SummaryStatus.FAILED
