import json
import logging
from typing import Optional, Union

from pydantic_ai import Agent, RunContext
from pydantic_ai.exceptions import UnexpectedModelBehavior

from tcmtwin.config import model, settings
from tcmtwin.diagnosis.models import DiagnosisQuery
from tcmtwin.exceptions import EmptyResponseError, InvalidQueryError
from tcmtwin.extraction.models import KnowledgeRecord
from tcmtwin.schemas import DIAGNOSIS_INSTRUCTIONS, DIAGNOSIS_PROMPT

LOG = logging.getLogger(__name__)

# Agent answering patient cases from one master's knowledge, passed in as deps
diagnosis_agent = Agent(
    model,
    deps_type=KnowledgeRecord,
    output_type=str,
)


def build_diagnosis_instructions(
    knowledge: KnowledgeRecord, language: str = "简体中文"
) -> str:
    """Embed the whole knowledge record and the answer format into the system instruction."""
    return DIAGNOSIS_INSTRUCTIONS.format(
        knowledge=json.dumps(knowledge.to_json_dict(), ensure_ascii=False, indent=2),
        language=language,
    )


def build_patient_case(query: DiagnosisQuery) -> str:
    """Format the patient case as the user prompt."""
    lines = [f"症状: {query.symptoms.strip()}"]
    if query.tongue.strip():
        lines.append(f"舌象: {query.tongue.strip()}")
    if query.pulse.strip():
        lines.append(f"脉象: {query.pulse.strip()}")
    return DIAGNOSIS_PROMPT.format(case="\n".join(lines))


@diagnosis_agent.instructions
def knowledge_instructions(ctx: RunContext[KnowledgeRecord]) -> str:
    return build_diagnosis_instructions(ctx.deps, settings.response_language)


async def diagnose(
    knowledge: Optional[KnowledgeRecord], query: Union[str, DiagnosisQuery]
) -> str:
    """
    Answer a patient case strictly from a master's knowledge.

    Each call is independent; any chat history is kept by the caller.

    Args:
        knowledge: The master's knowledge record
        query: Free-text case, or structured symptoms/tongue/pulse

    Returns:
        Markdown narrative with reasoning, suggested plan and sources

    Raises:
        InvalidQueryError: If there is no knowledge or no symptom description
        EmptyResponseError: If the model returned no text
    """
    if knowledge is None:
        raise InvalidQueryError("该泰斗尚未提取知识，无法进行诊断。")

    if isinstance(query, str):
        query = DiagnosisQuery.from_text(query)
    if query.is_blank:
        raise InvalidQueryError("请填写症状描述。")

    try:
        result = await diagnosis_agent.run(
            build_patient_case(query),
            deps=knowledge,
            model_settings={"temperature": settings.temperature},
        )
    except UnexpectedModelBehavior as e:
        LOG.error(f"Model returned no usable response: {e}")
        raise EmptyResponseError("未能生成诊疗方案。") from e

    text = (result.output or "").strip()
    if not text:
        raise EmptyResponseError("未能生成诊疗方案。")

    LOG.info(f"Generated diagnosis ({len(text)} characters)")
    return text
