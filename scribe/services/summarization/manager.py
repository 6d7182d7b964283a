from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.services.manager import Manager
from scribe.services.summarization.prompts import build_summary_prompts

# -------------------------------------------------------------- #
# Outcome Models
# -------------------------------------------------------------- #


class SummaryStatus(enum.Enum):
    SUMMARIZED = "summarized"
    SKIPPED_NO_TRANSCRIPT = "skipped_no_transcript"
    FAILED = "failed"


@dataclass
class SummaryOutcome:
    status: SummaryStatus
    text: str | None = None


# -------------------------------------------------------------- #
# Summarization Service
# -------------------------------------------------------------- #


class SummarizationService(Manager):
    """
    Single-attempt dispatch of a combined transcript to the summarizer.

    A blank transcript is never sent. Summarizer failures are reported as a
    FAILED outcome and never retried.
    """

    def __init__(self, context: Context):
        super().__init__(context)

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("SummarizationService started")

    async def summarize(self, transcript: str) -> SummaryOutcome:
        if not transcript or not transcript.strip():
            await self.services.logging_service.info("No transcript to summarize; skipping summary")
            return SummaryOutcome(status=SummaryStatus.SKIPPED_NO_TRANSCRIPT)

        system_prompt, prompt = build_summary_prompts(transcript, self.config.summary_context)

        await self.services.logging_service.info(
            f"Generating summary for a {len(transcript.split())}-word transcript"
        )
        try:
            summary = await self.server.summarizer_client.summarize(prompt, system_prompt=system_prompt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.services.logging_service.error(
                f"Summarizer failed: {type(e).__name__}: {e}"
            )
            return SummaryOutcome(status=SummaryStatus.FAILED)

        if summary is None or not summary.strip():
            await self.services.logging_service.warning("Summarizer returned no content")
            return SummaryOutcome(status=SummaryStatus.FAILED)

        await self.services.logging_service.info(
            f"Summary generated ({len(summary.split())} words)"
        )
        return SummaryOutcome(status=SummaryStatus.SUMMARIZED, text=summary.strip())
