"""
The four AI operations exposed to the incident application.

Each operation resolves its prompt, renders it, sends it through the request
manager and returns a structured payload with ``metadata.status`` set to
``"success"``. When the manager reports an unusable response (rate limited,
over budget, circuit open, providers down) or raises unexpectedly, the
matching fallback is returned instead, with
``metadata.status == "fallback_response"``.

Raised to the caller:
- PromptNotFoundError - the prompt (or requested version) does not exist
- ResponseParseError - a successful response is not the JSON the prompt promised
- ConfigurationError - no providers are configured
- RequestCancelled - the caller cancelled the request
"""

import json
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

import structlog

from ai_resilience.storage.models import AIRequestLog
from . import fallback
from .errors import ConfigurationError, PromptNotFoundError, RequestCancelled, ResponseParseError
from .manager import MultiProviderManager
from .models import AIRequest, AIResponse, FailureReason, generate_correlation_id
from .templates import PromptTemplate, RenderedPrompt, extract_required_variables, render_prompt, validate
from .variants import select_prompt_variant

logger = structlog.get_logger(__name__)

CLARIFICATION_QUESTIONS = "generate_clarification_questions"
ENHANCE_NARRATIVE = "enhance_narrative_content"
CONTRIBUTING_CONDITIONS = "analyze_contributing_conditions"
MOCK_ANSWERS = "generate_mock_answers"

NARRATIVE_PHASES = ("before_event", "during_event", "end_of_event", "post_event_support")

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_FENCED_ANY = re.compile(r"```\s*([\s\S]*?)\s*```")


class PromptStore(Protocol):
    def get_active_prompt(self, name: str) -> Optional[PromptTemplate]: ...

    def get_prompt(self, name: str, version: str) -> Optional[PromptTemplate]: ...

    def record_prompt_usage(
        self, name: str, version: str, response_time_ms: int, successful: bool
    ) -> Any: ...


class AuditLog(Protocol):
    def log_ai_request(self, entry: AIRequestLog) -> None: ...


def extract_json(content: str) -> str:
    """Strip a markdown code fence around JSON, if there is one."""
    match = _FENCED_JSON.search(content) or _FENCED_ANY.search(content)
    return (match.group(1) if match else content).strip()


def _incident_variables(incident: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "participant_name": incident.get("participant_name", ""),
        "reporter_name": incident.get("reporter_name", ""),
        "event_datetime": incident.get("event_datetime", ""),
        "location": incident.get("location", ""),
    }


@dataclass(frozen=True)
class _Invocation:
    """One sent operation request and what came back."""
    operation: str
    rendered: RenderedPrompt
    response: AIResponse
    user_id: Optional[str]
    incident_id: Optional[str]


class AIOperations:
    """Facade over prompt resolution, the request manager and fallbacks."""

    def __init__(
        self,
        manager: MultiProviderManager,
        prompt_store: PromptStore,
        audit_log: AuditLog,
        default_model: str,
        ab_test_ratio: Optional[float] = 0.5
    ):
        """
        Args:
            manager: Request manager used for every provider call
            prompt_store: Source of prompt templates and sink for usage stats
            audit_log: Sink for per-invocation audit records
            default_model: Model used when a prompt does not name one
            ab_test_ratio: Share of users routed to the second version when a
                user id is given and a prompt has several active versions.
                None always uses the newest active version
        """
        self.manager = manager
        self.prompt_store = prompt_store
        self.audit_log = audit_log
        self.default_model = default_model
        self.ab_test_ratio = ab_test_ratio

    # ------------------------------------------------------------------
    # Shared pipeline
    # ------------------------------------------------------------------

    def _resolve_prompt(
        self,
        name: str,
        version: Optional[str],
        user_id: Optional[str]
    ) -> PromptTemplate:
        if version:
            prompt = self.prompt_store.get_prompt(name, version)
        elif user_id and self.ab_test_ratio is not None and hasattr(self.prompt_store, "get_active_prompts"):
            active = self.prompt_store.get_active_prompts(name)
            prompt = select_prompt_variant(active, user_id, self.ab_test_ratio) if active else None
        else:
            prompt = self.prompt_store.get_active_prompt(name)

        if prompt is None:
            raise PromptNotFoundError(name, version)
        return prompt

    def _audit(
        self,
        operation: str,
        correlation_id: str,
        model: str,
        response: Optional[AIResponse],
        error: Optional[str],
        user_id: Optional[str],
        incident_id: Optional[str]
    ) -> None:
        self.audit_log.log_ai_request(AIRequestLog(
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id,
            operation=operation,
            model=model,
            success=bool(response and response.success) and error is None,
            processing_time_ms=response.processing_time_ms if response else 0,
            tokens_used=response.tokens_used if response else None,
            cost=response.cost if response else None,
            error=error,
            user_id=user_id,
            incident_id=incident_id
        ))

    def _record(self, call: _Invocation, error: Optional[str] = None) -> None:
        """Write the audit entry and prompt usage for a finished invocation.

        ``error`` marks a provider response that the operation could not use.
        """
        response = call.response
        self._audit(
            call.operation, response.correlation_id, call.rendered.model, response,
            error or response.error, call.user_id, call.incident_id
        )
        self.prompt_store.record_prompt_usage(
            call.rendered.name, call.rendered.version, response.processing_time_ms,
            response.success and error is None
        )

    def _invoke(
        self,
        operation: str,
        variables: Mapping[str, Any],
        user_id: Optional[str],
        incident_id: Optional[str],
        prompt_version: Optional[str],
        cancel_event: Optional[threading.Event],
        metadata: Optional[Dict[str, Any]] = None
    ) -> _Invocation:
        """Resolve, render and send one operation's prompt.

        A failed response is recorded here. A successful one is recorded by
        the operation once it has been parsed.
        """
        correlation_id = generate_correlation_id()
        log = logger.bind(correlation_id=correlation_id, operation=operation)

        try:
            prompt = self._resolve_prompt(operation, prompt_version, user_id)
        except PromptNotFoundError as e:
            log.error("prompt_not_found", prompt=operation, version=prompt_version)
            self._audit(operation, correlation_id, self.default_model, None, str(e), user_id, incident_id)
            raise

        validation = validate(prompt.template, variables)
        if not validation.is_valid:
            log.warning(
                "prompt_variables_missing",
                prompt=prompt.name,
                version=prompt.version,
                missing=validation.missing_variables,
            )

        rendered = render_prompt(prompt, variables, self.default_model)
        request = AIRequest(
            correlation_id=correlation_id,
            model=rendered.model,
            prompt=rendered.processed_template,
            temperature=rendered.temperature,
            max_tokens=rendered.max_tokens,
            metadata={
                "operation": operation,
                "user_id": user_id,
                "incident_id": incident_id,
                "prompt_name": rendered.name,
                "prompt_version": rendered.version,
                **(metadata or {}),
            },
        )
        log.info("ai_operation_started", prompt_version=rendered.version, model=rendered.model)

        try:
            response = self.manager.send_request(request, rate_limit_key=user_id, cancel_event=cancel_event)
        except (ConfigurationError, RequestCancelled):
            raise
        except Exception as e:
            log.error("ai_operation_failed", error=str(e), exc_info=True)
            response = AIResponse.failure(request, f"Unexpected error: {e}", FailureReason.PROVIDER_ERROR)

        call = _Invocation(operation, rendered, response, user_id, incident_id)
        if not response.success:
            log.warning(
                "ai_operation_degraded",
                failure_reason=response.failure_reason.value if response.failure_reason else None,
                error=response.error,
            )
            self._record(call)
        return call

    def _parse_json(self, call: _Invocation) -> Any:
        response = call.response
        try:
            return json.loads(extract_json(response.content))
        except json.JSONDecodeError as e:
            logger.error(
                "ai_response_parse_failed",
                correlation_id=response.correlation_id,
                operation=call.operation,
                error=str(e),
            )
            message = f"Failed to parse AI response as JSON: {e}"
            self._record(call, error=message)
            raise ResponseParseError(message, response.correlation_id)

    def _success_metadata(self, call: _Invocation, **extra: Any) -> Dict[str, Any]:
        response = call.response
        metadata = {
            "processed_at": datetime.now(timezone.utc).isoformat(),
            "status": "success",
            "correlation_id": response.correlation_id,
            "processing_time_ms": response.processing_time_ms,
            "tokens_used": response.tokens_used,
            "cost": response.cost,
            "model": response.model,
            "provider": response.provider,
            "prompt_name": call.rendered.name,
            "prompt_version": call.rendered.version,
        }
        metadata.update(extra)
        return metadata

    @staticmethod
    def _tag_fallback(result: Dict[str, Any], response: AIResponse) -> Dict[str, Any]:
        # Link the degraded result back to the request that failed.
        result["metadata"]["request_correlation_id"] = response.correlation_id
        if response.failure_reason:
            result["metadata"]["failure_reason"] = response.failure_reason.value
        return result

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def generate_clarification_questions(
        self,
        incident: Mapping[str, Any],
        user_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        prompt_version: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        """Generate 2-4 clarification questions for each narrative phase.

        Args:
            incident: participant_name, reporter_name, event_datetime, location
                and one narrative text per phase (before_event, during_event,
                end_of_event, post_event_support)

        Returns:
            ``{"clarification_questions": {...}, "metadata": {...}}``
        """
        variables = _incident_variables(incident)
        for phase in NARRATIVE_PHASES:
            variables[phase] = incident.get(phase, "")

        call = self._invoke(
            CLARIFICATION_QUESTIONS, variables, user_id, incident_id, prompt_version, cancel_event
        )
        if not call.response.success:
            return self._tag_fallback(fallback.clarification_questions_fallback(incident), call.response)

        questions = self._parse_json(call)
        self._record(call)
        return {
            "clarification_questions": questions,
            "metadata": self._success_metadata(call, report_context=_incident_variables(incident)),
        }

    def enhance_narrative_content(
        self,
        phase: str,
        instruction: str,
        answers: Iterable[Mapping[str, Any]],
        incident: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        prompt_version: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        """Fold answered clarification questions into one narrative phase.

        Returns:
            ``{"output": str, "narrative": str, "metadata": {...}}``
        """
        answers = list(answers)
        blocks = fallback.format_qa_pairs(answers)
        variables = _incident_variables(incident or {})
        variables.update({
            "phase": phase,
            "instruction": instruction,
            "narrative_facts": "\n\n".join(blocks),
        })

        call = self._invoke(
            ENHANCE_NARRATIVE, variables, user_id, incident_id, prompt_version, cancel_event,
            metadata={"phase": phase, "answers_count": len(blocks)},
        )
        if not call.response.success:
            return self._tag_fallback(fallback.enhance_narrative_fallback(phase, answers), call.response)

        self._record(call)
        text = call.response.content.strip()
        return {
            "output": text,
            "narrative": text,
            "metadata": self._success_metadata(call, phase=phase, answers_processed=len(blocks)),
        }

    def analyze_contributing_conditions(
        self,
        incident: Mapping[str, Any],
        user_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        prompt_version: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        """Summarise the immediate contributing conditions of an incident.

        ``incident`` may carry ``<phase>_extra`` fields with clarification
        material for each phase; missing extras render as empty text.

        Returns:
            ``{"analysis": str, "metadata": {...}}``
        """
        variables = _incident_variables(incident)
        for phase in NARRATIVE_PHASES:
            variables[phase] = incident.get(phase, "")
            variables[f"{phase}_extra"] = incident.get(f"{phase}_extra") or ""

        call = self._invoke(
            CONTRIBUTING_CONDITIONS, variables, user_id, incident_id, prompt_version, cancel_event
        )
        if not call.response.success:
            return self._tag_fallback(fallback.contributing_conditions_fallback(incident), call.response)

        self._record(call)
        return {
            "analysis": call.response.content.strip(),
            "metadata": self._success_metadata(call, incident_context=_incident_variables(incident)),
        }

    def generate_mock_answers(
        self,
        incident: Mapping[str, Any],
        phase: str,
        phase_narrative: str,
        questions: Union[str, List[Any]],
        user_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        prompt_version: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        """Generate realistic answers to clarification questions (test/demo data).

        Args:
            questions: List of questions, or the same list as a JSON string

        Returns:
            ``{"mock_answers": {"output", "answers"}, "metadata": {...}}``
        """
        if isinstance(questions, str):
            questions_text = questions
            try:
                parsed_questions = json.loads(questions)
            except json.JSONDecodeError:
                parsed_questions = None
        else:
            parsed_questions = list(questions)
            questions_text = json.dumps(parsed_questions, ensure_ascii=False)
        questions_count = len(parsed_questions) if isinstance(parsed_questions, list) else 0

        variables = _incident_variables(incident)
        variables.update({
            "phase": phase,
            "phase_narrative": phase_narrative,
            "questions": questions_text,
        })

        call = self._invoke(
            MOCK_ANSWERS, variables, user_id, incident_id, prompt_version, cancel_event,
            metadata={"phase": phase},
        )
        if not call.response.success:
            return self._tag_fallback(fallback.mock_answers_fallback(phase), call.response)

        parsed = self._parse_json(call)
        if not isinstance(parsed, dict) or not isinstance(parsed.get("answers"), list):
            logger.error(
                "ai_response_schema_mismatch",
                correlation_id=call.response.correlation_id,
                operation=MOCK_ANSWERS,
            )
            message = "Mock answers response must be an object with an 'answers' array"
            self._record(call, error=message)
            raise ResponseParseError(message, call.response.correlation_id)

        self._record(call)
        return {
            "mock_answers": {
                "output": call.response.content.strip(),
                "answers": parsed["answers"],
            },
            "metadata": self._success_metadata(call, phase=phase, questions_answered=questions_count),
        }

    def get_template_variables(self, name: str, version: Optional[str] = None) -> Dict[str, Any]:
        """Describe the variables a stored prompt expects."""
        prompt = self._resolve_prompt(name, version, None)
        return {
            "prompt_name": prompt.name,
            "prompt_version": prompt.version,
            "required_variables": extract_required_variables(prompt.template),
            "description": prompt.description,
        }
