from pydantic import BaseModel, Field


class DiagnosisQuery(BaseModel):
    """A patient case as entered by the user."""

    symptoms: str = Field(description="症状描述 (main complaint and symptoms)")
    tongue: str = Field(default="", description="舌象 (tongue appearance)")
    pulse: str = Field(default="", description="脉象 (pulse)")

    @classmethod
    def from_text(cls, text: str) -> "DiagnosisQuery":
        return cls(symptoms=text)

    @property
    def is_blank(self) -> bool:
        return not self.symptoms.strip()
