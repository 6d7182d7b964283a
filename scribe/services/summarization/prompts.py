"""
Prompt templates for session summaries.

The transcript handed to the model is already labelled per speaker and in
first-speech order.
"""

# -------------------------------------------------------------- #
# Session Summary
# -------------------------------------------------------------- #

SUMMARY_SYSTEM_MESSAGE = """You are a helpful assistant that creates concise summaries of voice chat transcriptions. Focus on key points, decisions made, and action items."""

SUMMARY_TEAM_CONTEXT_TEMPLATE = """The conversation comes from the following team or context: {summary_context}"""

SUMMARY_USER_CONTENT_TEMPLATE = """Please summarize the following voice chat transcription.
Cover:
- Key points discussed
- Decisions made
- Action items and who owns them

Transcription:
{transcript}"""


def build_summary_prompts(transcript: str, summary_context: str = "") -> tuple[str, str]:
    """Return the (system, user) prompt pair for a transcript."""
    system_message = SUMMARY_SYSTEM_MESSAGE
    if summary_context.strip():
        system_message = (
            f"{system_message}\n"
            f"{SUMMARY_TEAM_CONTEXT_TEMPLATE.format(summary_context=summary_context.strip())}"
        )
    return system_message, SUMMARY_USER_CONTENT_TEMPLATE.format(transcript=transcript)
