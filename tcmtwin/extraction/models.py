from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _clean_list(value: Any) -> List[Any]:
    """Coerce a non-list to an empty list and drop falsy items."""
    if not isinstance(value, list):
        return []
    return [item for item in value if item]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SymptomMapping(_CamelModel):
    """One symptom/sign cluster mapped to its syndrome and treatment."""

    disease: str = Field(
        default="",
        description="Which entry of the disease classifications this mapping belongs to",
    )
    symptoms: List[str] = Field(default_factory=list, description="症状 (symptoms)")
    tongue: str = Field(default="", description="舌象 (tongue appearance)")
    pulse: str = Field(default="", description="脉象 (pulse)")
    syndrome: str = Field(default="", description="证型 (syndrome pattern)")
    treatment_principle: str = Field(default="", description="治法 (treatment principle)")
    prescription: str = Field(default="", description="方剂 (base prescription)")
    modifications: List[str] = Field(
        default_factory=list, description="加减 (symptom-based modifications)"
    )
    associated_thoughts: List[str] = Field(
        default_factory=list,
        description="The master's thoughts that apply to this mapping",
    )

    @field_validator(
        "disease", "tongue", "pulse", "syndrome", "treatment_principle", "prescription",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("symptoms", "modifications", "associated_thoughts", mode="before")
    @classmethod
    def _clean_sequence(cls, value: Any) -> List[Any]:
        return _clean_list(value)


class KnowledgeRecord(_CamelModel):
    """Knowledge accumulated for one master over any number of extraction rounds."""

    disease_classifications: List[str] = Field(
        default_factory=list, description="疾病分类, without duplicates"
    )
    symptom_mappings: List[SymptomMapping] = Field(
        default_factory=list, description="Append-only list of mappings"
    )
    master_thoughts: List[str] = Field(
        default_factory=list, description="泰斗心法, without duplicates"
    )
    has_more_content: Optional[bool] = Field(
        default=None,
        description="True if the source document still holds unextracted knowledge, "
        "False if exhausted, None if not yet known",
    )

    @classmethod
    def empty(cls) -> "KnowledgeRecord":
        return cls()

    def is_empty(self) -> bool:
        return not (
            self.disease_classifications or self.symptom_mappings or self.master_thoughts
        )

    def to_json_dict(self) -> dict:
        """The record in its exported camelCase JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


class KnowledgeBatch(KnowledgeRecord):
    """The normalized output of a single extraction round, before merging."""

    has_more_content: bool = Field(
        default=False,
        description="Whether the model reported more knowledge left in the document",
    )

    @field_validator(
        "disease_classifications", "symptom_mappings", "master_thoughts", mode="before"
    )
    @classmethod
    def _clean_sequence(cls, value: Any) -> List[Any]:
        return _clean_list(value)

    @field_validator("has_more_content", mode="before")
    @classmethod
    def _default_flag(cls, value: Any) -> Any:
        return False if value is None else value
