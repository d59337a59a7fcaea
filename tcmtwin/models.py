import uuid
from typing import Optional

from pydantic import BaseModel, Field

from tcmtwin.extraction.models import KnowledgeRecord


class SourceDocument(BaseModel):
    """A document as handed over by ingestion: raw payload plus MIME type."""

    payload: bytes = Field(description="Raw document bytes (text documents are UTF-8)")
    mime_type: str = Field(description="MIME type of the payload")
    name: str = Field(default="", description="Display name, usually the file name")

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/")

    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


class Master(BaseModel):
    """A named practitioner agent backed by its accumulated knowledge."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str
    knowledge: Optional[KnowledgeRecord] = None

    @property
    def has_knowledge(self) -> bool:
        return self.knowledge is not None
