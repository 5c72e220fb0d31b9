"""
Prompt template rendering and validation.

Templates use ``{{ name }}`` placeholders (whitespace inside the braces is
ignored). Rendering never raises: unknown variables are left in place and
malformed placeholders are passed through untouched, so callers that need
strict behaviour must call ``validate`` first.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

# Name must start with a non-space, non-brace character; braces never nest.
_PLACEHOLDER = re.compile(r"\{\{\s*([^{}\s][^{}]*?)\s*\}\}")


@dataclass(frozen=True)
class PromptTemplate:
    """A stored, versioned prompt. Immutable once created."""
    name: str
    version: str
    template: str
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    is_active: bool = True
    description: Optional[str] = None


@dataclass(frozen=True)
class RenderedPrompt:
    """A template rendered for a single invocation."""
    name: str
    version: str
    processed_template: str
    substitutions: Dict[str, str]
    model: str
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass(frozen=True)
class RenderResult:
    processed_template: str
    substitutions: Dict[str, str]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    required_variables: List[str] = field(default_factory=list)
    missing_variables: List[str] = field(default_factory=list)
    unused_variables: List[str] = field(default_factory=list)


def _to_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def render(template: str, variables: Mapping[str, Any]) -> RenderResult:
    """Substitute ``{{ name }}`` placeholders with values from ``variables``.

    Args:
        template: Template text
        variables: Values keyed by placeholder name

    Returns:
        RenderResult with the processed text and a map of every placeholder
        seen. Unresolved placeholders map to their own placeholder text.
    """
    substitutions: Dict[str, str] = {}

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in variables:
            value = _to_text(variables[name])
            substitutions[name] = value
            return value
        substitutions[name] = match.group(0)
        return match.group(0)

    processed = _PLACEHOLDER.sub(_replace, template)
    return RenderResult(processed_template=processed, substitutions=substitutions)


def extract_required_variables(template: str) -> List[str]:
    """Placeholder names in first-seen order, without duplicates."""
    seen: Dict[str, None] = {}
    for match in _PLACEHOLDER.finditer(template):
        seen.setdefault(match.group(1), None)
    return list(seen)


def validate(template: str, provided_variables: Mapping[str, Any]) -> ValidationResult:
    """Compare the placeholders in ``template`` against the provided names.

    Unused variables are reported but do not affect validity.
    """
    required = extract_required_variables(template)
    provided = list(provided_variables.keys())
    missing = [name for name in required if name not in provided_variables]
    unused = [name for name in provided if name not in required]
    return ValidationResult(
        is_valid=not missing,
        required_variables=required,
        missing_variables=missing,
        unused_variables=unused
    )


def render_prompt(
    prompt: PromptTemplate,
    variables: Mapping[str, Any],
    default_model: str
) -> RenderedPrompt:
    """Render a stored prompt, falling back to ``default_model`` when unset."""
    result = render(prompt.template, variables)
    return RenderedPrompt(
        name=prompt.name,
        version=prompt.version,
        processed_template=result.processed_template,
        substitutions=result.substitutions,
        model=prompt.model or default_model,
        max_tokens=prompt.max_tokens,
        temperature=prompt.temperature
    )
