import json
from typing import List

import pytest
from pydantic_ai.messages import ModelMessage, ModelRequest, ModelResponse, TextPart, UserPromptPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from tcmtwin.extraction.models import KnowledgeBatch, KnowledgeRecord
from tcmtwin.models import SourceDocument


SCENARIO_A = {
    "diseaseClassifications": ["外感发热"],
    "symptomMappings": [
        {
            "disease": "外感发热",
            "symptoms": ["发热", "恶寒"],
            "tongue": "舌淡",
            "pulse": "浮紧",
            "syndrome": "风寒束表",
            "treatmentPrinciple": "辛温解表",
            "prescription": "麻黄汤",
            "modifications": [],
            "associatedThoughts": [],
        }
    ],
    "masterThoughts": ["表证宜汗"],
    "hasMoreContent": False,
}


def batch_json(**overrides) -> str:
    """Scenario A as raw model output, with top-level fields replaced."""
    return json.dumps({**SCENARIO_A, **overrides}, ensure_ascii=False)


def make_mapping(syndrome: str, disease: str = "脾胃病") -> dict:
    return {
        "disease": disease,
        "symptoms": ["胃脘胀满"],
        "tongue": "苔白腻",
        "pulse": "濡",
        "syndrome": syndrome,
        "treatmentPrinciple": "健脾化湿",
        "prescription": "平胃散",
        "modifications": ["纳差加焦三仙"],
        "associatedThoughts": ["治脾以燥湿为先"],
    }


class ScriptedModel:
    """Replays canned model outputs and records the messages it received."""

    def __init__(self, *outputs: str):
        self.outputs = list(outputs)
        self.calls: List[List[ModelMessage]] = []

    def respond(self, messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        self.calls.append(messages)
        index = min(len(self.calls), len(self.outputs)) - 1
        return ModelResponse(parts=[TextPart(content=self.outputs[index])])

    @property
    def model(self) -> FunctionModel:
        return FunctionModel(self.respond)

    def user_content(self, call: int = 0) -> list:
        """The user prompt content of a recorded call, as a list of parts."""
        for message in self.calls[call]:
            if isinstance(message, ModelRequest):
                for part in message.parts:
                    if isinstance(part, UserPromptPart):
                        content = part.content
                        return [content] if isinstance(content, str) else list(content)
        return []


class FakeBatchRunner:
    """Stands in for run_extraction_batch; results may be batches or exceptions."""

    def __init__(self, *results):
        self.results = list(results)
        self.priors = []

    async def __call__(self, document, prior):
        self.priors.append(prior)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeDiagnoser:
    """Stands in for diagnose and records what it was asked."""

    def __init__(self, answer: str = "### 1. 辨证过程"):
        self.answer = answer
        self.calls = []

    async def __call__(self, knowledge, query):
        self.calls.append((knowledge, query))
        return self.answer


@pytest.fixture
def scenario_a_batch() -> KnowledgeBatch:
    return KnowledgeBatch.model_validate(SCENARIO_A)


@pytest.fixture
def scenario_a_record() -> KnowledgeRecord:
    return KnowledgeRecord.model_validate(SCENARIO_A)


@pytest.fixture
def text_document() -> SourceDocument:
    return SourceDocument(
        payload="伤寒论医案: 发热恶寒，脉浮紧，麻黄汤主之。".encode("utf-8"),
        mime_type="text/plain",
        name="医案.txt",
    )


@pytest.fixture
def pdf_document() -> SourceDocument:
    return SourceDocument(payload=b"%PDF-1.4 fake", mime_type="application/pdf", name="医案.pdf")
