"""
Default prompt templates for the four AI operations.
"""

from typing import List

from ai_resilience.core.operations import (
    CLARIFICATION_QUESTIONS,
    CONTRIBUTING_CONDITIONS,
    ENHANCE_NARRATIVE,
    MOCK_ANSWERS
)
from ai_resilience.core.templates import PromptTemplate
from .repository import SQLitePromptStore

DEFAULT_PROMPTS: List[PromptTemplate] = [
    PromptTemplate(
        name=CLARIFICATION_QUESTIONS,
        version="v1.0.0",
        temperature=0.7,
        max_tokens=1000,
        description="Phase-by-phase clarification questions for an incident narrative",
        template="""You are preparing clarification questions for a previously submitted narrative report.
The incident involved {{ participant_name }}, and was reported by {{ reporter_name }}.
The original event occurred on {{ event_datetime }} at {{ location }}.

Your task is to generate open-ended follow-up questions that help clarify or expand on the original report, broken into four structured sections:

<before_event>{{ before_event }}</before_event>
<during_event>{{ during_event }}</during_event>
<end_of_event>{{ end_of_event }}</end_of_event>
<post_event_support>{{ post_event_support }}</post_event_support>

Output your response as valid JSON using the following structure:
{
  "before_event": ["Example question here", "Additional questions..."],
  "during_event": ["Example question here", "Additional questions..."],
  "end_of_event": ["Example question here", "Additional questions..."],
  "post_event_support": ["Example question here", "Additional questions..."]
}

Guidelines:
- Provide **2 to 4** open-ended questions per section, depending on what the text invites
- Focus on clarifying actions, reactions, timing, environment, witnesses, decisions, or outcomes
- Use clear and supportive language that encourages reflection
- Treat unusual or out-of-place statements as potentially relevant
- Return only the JSON output, no extra commentary.""",
    ),
    PromptTemplate(
        name=ENHANCE_NARRATIVE,
        version="v1.0.0",
        temperature=0.3,
        max_tokens=800,
        description="Fold answered clarification questions into a narrative phase",
        template="""You are a report-writing assistant.

For the "{{ phase }}" phase of an incident, you have the following answered clarification questions.

For each one:
- Keep the original question.
- Respond with the answer on the next line.
- Lightly clean up the grammar of the answer, but keep the original tone and phrasing.
- Do not summarize or rewrite the response.
- Do not include unanswered questions.

Details:
{{ narrative_facts }}

Instruction:
{{ instruction }}""",
    ),
    PromptTemplate(
        name=CONTRIBUTING_CONDITIONS,
        version="v1.0.0",
        temperature=0.5,
        max_tokens=1200,
        description="Immediate contributing conditions of an incident",
        template="""You are reviewing a narrative report from {{ reporter_name }} about an incident involving {{ participant_name }} on {{ event_datetime }} at {{ location }}.

What was happening in the lead-up to the incident?
<before_event>{{ before_event }}</before_event>
<before_event_extra>{{ before_event_extra }}</before_event_extra>

What occurred during the incident itself?
<during_event>{{ during_event }}</during_event>
<during_event_extra>{{ during_event_extra }}</during_event_extra>

How did the incident conclude?
<end_of_event>{{ end_of_event }}</end_of_event>
<end_of_event_extra>{{ end_of_event_extra }}</end_of_event_extra>

What support or care was provided in the two hours after the event?
<post_event_support>{{ post_event_support }}</post_event_support>
<post_event_support_extra>{{ post_event_support_extra }}</post_event_support_extra>

Identify and summarise the immediate contributing conditions: meaningful patterns, responses, support gaps, or participant behaviours that contributed to the occurrence or escalation of this specific incident.

Use this format:

**Immediate Contributing Conditions**

### [Condition Name]
- [Specific supporting detail from the report]

Only include items clearly supported by the data.
Focus on immediate relevance to this incident, not long-term systemic causes.""",
    ),
    PromptTemplate(
        name=MOCK_ANSWERS,
        version="v1.0.0",
        temperature=0.8,
        max_tokens=1000,
        description="Realistic mock answers to clarification questions, for testing and demos",
        template="""You are generating realistic mock answers for clarification questions about an incident report.

The incident involved {{ participant_name }}, and was reported by {{ reporter_name }}
The event occurred at {{ location }}

You are generating answers specifically for the {{ phase }} phase of the incident.

<phase_narrative>
{{ phase_narrative }}
</phase_narrative>

Questions to answer:
{{ questions }}

Output your response as valid JSON using the following structure:

```json
{
  "answers": [
    {
      "question_id": "question-id-here",
      "question": "The original question text",
      "answer": "Detailed realistic answer here"
    }
  ]
}
```

Return only the JSON output, no extra commentary.""",
    ),
]


def seed_default_prompts(store: SQLitePromptStore) -> List[str]:
    """Store each default prompt unless the prompt is already active or seeded.

    Returns:
        Names of the prompts that were inserted
    """
    inserted = []
    for prompt in DEFAULT_PROMPTS:
        if (store.get_active_prompt(prompt.name) is None and
                store.get_prompt(prompt.name, prompt.version) is None):
            store.save_prompt(prompt)
            inserted.append(prompt.name)
    return inserted
