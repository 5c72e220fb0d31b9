"""
Zero-cost substitute results for when the provider path is unavailable.

Each function mirrors the payload shape of its operation's success path so
callers need no special handling; only ``metadata.status`` and
``metadata.fallback_reason`` reveal that the result is degraded.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping

from .models import generate_correlation_id

FALLBACK_STATUS = "fallback_response"
NO_VALID_PAIRS = "No valid question-answer pairs provided."

CLARIFICATION_FALLBACK_QUESTIONS: Dict[str, List[str]] = {
    "before_event": [
        "What was the participant doing in the hour before the incident?",
        "Were there any unusual circumstances or changes to routine before the event?",
    ],
    "during_event": [
        "Can you describe the sequence of events during the incident?",
        "Were there any witnesses present during the event?",
    ],
    "end_of_event": [
        "How did the incident conclude?",
        "What immediate actions were taken to address the situation?",
    ],
    "post_event_support": [
        "What support was provided to the participant after the incident?",
        "Were any follow-up actions or referrals made?",
    ],
}

MANUAL_ANALYSIS_TEXT = """**Unable to Complete AI Analysis**

The AI service is currently unavailable. Please try again later or complete the analysis manually.

### Manual Analysis Required
- Review the incident narrative for patterns or contributing factors
- Consider environmental, procedural, or support-related conditions
- Document any immediate causes or escalating factors identified

*This is a fallback response generated when AI analysis is unavailable.*"""

MOCK_ANSWERS_MESSAGE = (
    "AI service is currently unavailable. Mock answers cannot be generated "
    "at this time. Please try again later."
)


def _fallback_metadata(reason: str, **extra: Any) -> Dict[str, Any]:
    metadata = {
        "processed_at": datetime.now(timezone.utc).isoformat(),
        "status": FALLBACK_STATUS,
        "correlation_id": generate_correlation_id(),
        "processing_time_ms": 0,
        "tokens_used": 0,
        "cost": 0,
        "fallback_reason": reason,
    }
    metadata.update(extra)
    return metadata


def _incident_context(incident: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "participant_name": incident.get("participant_name"),
        "reporter_name": incident.get("reporter_name"),
        "event_datetime": incident.get("event_datetime"),
        "location": incident.get("location"),
    }


def format_qa_pairs(answers: Iterable[Mapping[str, Any]]) -> List[str]:
    """Render answered pairs as ``Q:``/``A:`` blocks, skipping blank ones."""
    blocks = []
    for item in answers:
        question = (item.get("question") or "").strip()
        answer = (item.get("answer") or "").strip()
        if question and answer:
            blocks.append(f"Q: {question}\nA: {answer}")
    return blocks


def clarification_questions_fallback(incident: Mapping[str, Any]) -> Dict[str, Any]:
    """Generic phase-keyed clarification questions."""
    return {
        "clarification_questions": {
            phase: list(questions)
            for phase, questions in CLARIFICATION_FALLBACK_QUESTIONS.items()
        },
        "metadata": _fallback_metadata(
            "AI service unavailable - using predefined questions",
            report_context=_incident_context(incident),
        ),
    }


def enhance_narrative_fallback(
    phase: str,
    answers: Iterable[Mapping[str, Any]]
) -> Dict[str, Any]:
    """Return the collected answers as literal Q/A text so none are lost."""
    blocks = format_qa_pairs(answers)
    text = "\n\n".join(blocks) if blocks else NO_VALID_PAIRS
    return {
        "output": text,
        "narrative": text,
        "metadata": _fallback_metadata(
            "AI service unavailable - returning formatted Q&A pairs",
            phase=phase,
            answers_processed=len(blocks),
        ),
    }


def contributing_conditions_fallback(incident: Mapping[str, Any]) -> Dict[str, Any]:
    """Fixed instruction to analyse manually, tagged with the incident context."""
    context = _incident_context(incident)
    reference = (
        f"Incident: {context['participant_name']} (reported by {context['reporter_name']}) "
        f"on {context['event_datetime']} at {context['location']}"
    )
    return {
        "analysis": f"{MANUAL_ANALYSIS_TEXT}\n\n{reference}",
        "metadata": _fallback_metadata(
            "AI service unavailable - manual analysis required",
            incident_context=context,
        ),
    }


def mock_answers_fallback(phase: str) -> Dict[str, Any]:
    """Empty answer set with an explanatory message, in the success-path schema."""
    payload = {"answers": [], "message": MOCK_ANSWERS_MESSAGE}
    return {
        "mock_answers": {
            "output": json.dumps(payload),
            "answers": [],
            "message": MOCK_ANSWERS_MESSAGE,
        },
        "metadata": _fallback_metadata(
            "AI service unavailable - cannot generate mock content",
            phase=phase,
            questions_answered=0,
        ),
    }
