"""
Request building and response validation for a single extraction round.

The model is asked for a bounded batch per category so that its answer is not
truncated; the raw answer is then validated against the knowledge schema and
normalized before it is merged.
"""
import json
import logging
import re
from typing import Optional

from pydantic import ValidationError

from tcmtwin.exceptions import EmptyResponseError, MalformedResponseError
from tcmtwin.extraction.models import KnowledgeBatch, KnowledgeRecord
from tcmtwin.schemas import (
    EXTRACTION_PROMPT,
    KNOWLEDGE_BATCH_SCHEMA,
    MAX_DISEASE_CLASSIFICATIONS,
    MAX_MASTER_THOUGHTS,
    MAX_SYMPTOM_MAPPINGS,
    PRIOR_KNOWLEDGE_PROMPT,
)

LOG = logging.getLogger(__name__)

_OPENING_FENCE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\n?```$")


def _as_json_list(values) -> str:
    return json.dumps(list(values), ensure_ascii=False)


def build_extraction_prompt(
    prior: Optional[KnowledgeRecord] = None,
    max_diseases: int = MAX_DISEASE_CLASSIFICATIONS,
    max_mappings: int = MAX_SYMPTOM_MAPPINGS,
    max_thoughts: int = MAX_MASTER_THOUGHTS,
) -> str:
    """
    Build the text instruction block for one extraction round.

    Args:
        prior: Knowledge extracted in earlier rounds, enumerated in the prompt
            so the model only returns new items
        max_diseases: Ceiling for disease classifications in this batch
        max_mappings: Ceiling for symptom mappings in this batch
        max_thoughts: Ceiling for master's thoughts in this batch

    Returns:
        The prompt text
    """
    prompt = EXTRACTION_PROMPT.format(
        max_diseases=max_diseases,
        max_mappings=max_mappings,
        max_thoughts=max_thoughts,
        schema=json.dumps(KNOWLEDGE_BATCH_SCHEMA, ensure_ascii=False, indent=2),
    )

    if prior is not None:
        prompt += PRIOR_KNOWLEDGE_PROMPT.format(
            diseases=_as_json_list(prior.disease_classifications),
            syndromes=_as_json_list(m.syndrome for m in prior.symptom_mappings),
            thoughts=_as_json_list(prior.master_thoughts),
            max_diseases=max_diseases,
            max_mappings=max_mappings,
            max_thoughts=max_thoughts,
        )

    return prompt


def strip_code_fences(text: str) -> str:
    """Remove a ```json or bare ``` fence wrapped around the model output."""
    text = text.strip()
    if text.startswith("```"):
        text = _OPENING_FENCE.sub("", text, count=1)
        text = _CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def parse_batch(raw: Optional[str]) -> KnowledgeBatch:
    """
    Validate and normalize the raw model output of one extraction round.

    Args:
        raw: Text returned by the model

    Returns:
        The normalized batch

    Raises:
        EmptyResponseError: If the model returned no text
        MalformedResponseError: If the text is not JSON matching the schema
    """
    if not raw or not raw.strip():
        raise EmptyResponseError()

    text = strip_code_fences(raw)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        LOG.error(f"Model output is not valid JSON: {e}")
        LOG.debug(f"Raw output: {raw[:500]}")
        raise MalformedResponseError() from e

    if not isinstance(data, dict):
        LOG.error(f"Expected a JSON object, got {type(data).__name__}")
        raise MalformedResponseError()

    try:
        batch = KnowledgeBatch.model_validate(
            {
                "diseaseClassifications": data.get("diseaseClassifications"),
                "symptomMappings": data.get("symptomMappings"),
                "masterThoughts": data.get("masterThoughts"),
                "hasMoreContent": data.get("hasMoreContent"),
            }
        )
    except ValidationError as e:
        LOG.error(f"Model output does not match the knowledge schema: {e}")
        LOG.debug(f"Raw output: {raw[:500]}")
        raise MalformedResponseError() from e

    return batch
