import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from tcmtwin.exceptions import MissingDocumentError
from tcmtwin.extraction.merge import merge
from tcmtwin.extraction.models import KnowledgeBatch, KnowledgeRecord
from tcmtwin.models import SourceDocument

LOG = logging.getLogger(__name__)

BatchRunner = Callable[
    [SourceDocument, Optional[KnowledgeRecord]], Awaitable[KnowledgeBatch]
]


class SessionState(str, Enum):
    NO_DOCUMENT = "no_document"
    READY = "ready"
    HAS_MORE = "has_more"
    EXHAUSTED = "exhausted"


class ExtractionSession(BaseModel):
    """
    Resumable extraction over one document for one master.

    The session holds nothing beyond the document and the current knowledge;
    its state is derived from the knowledge's continuation flag.
    """

    master_id: str
    document: Optional[SourceDocument] = None
    knowledge: Optional[KnowledgeRecord] = None
    rounds: int = Field(default=0, description="Successful rounds in this process")

    @property
    def state(self) -> SessionState:
        if self.document is None:
            return SessionState.NO_DOCUMENT
        if self.knowledge is None or self.knowledge.has_more_content is None:
            return SessionState.READY
        if self.knowledge.has_more_content:
            return SessionState.HAS_MORE
        return SessionState.EXHAUSTED

    def attach(self, document: SourceDocument) -> None:
        """Attach a new document; existing knowledge carries forward as prior knowledge."""
        self.document = document
        self.rounds = 0
        if self.knowledge is not None:
            self.knowledge = self.knowledge.model_copy(update={"has_more_content": None})
        LOG.info(f"Attached {document.name or 'document'} to master {self.master_id}")


class ContinuationController:
    """Drives extraction rounds for a session and merges their results."""

    def __init__(self, batch_runner: Optional[BatchRunner] = None):
        if batch_runner is None:
            from tcmtwin.extraction.agents import run_extraction_batch

            batch_runner = run_extraction_batch
        self.batch_runner = batch_runner

    async def extract_next(self, session: ExtractionSession) -> KnowledgeRecord:
        """
        Run one round and merge it into the session's knowledge.

        The session is advanced only when the round succeeds; on any error it
        keeps its previous document and knowledge, so the round can be retried.

        Returns:
            The merged knowledge, to be persisted onto the master by the caller
        """
        if session.document is None:
            raise MissingDocumentError()

        if session.state is SessionState.EXHAUSTED:
            LOG.warning(
                f"Master {session.master_id}: document already reported as exhausted, "
                "extracting anyway"
            )

        batch = await self.batch_runner(session.document, session.knowledge)
        knowledge = merge(session.knowledge, batch)

        session.knowledge = knowledge
        session.rounds += 1
        LOG.info(
            f"Master {session.master_id}: round {session.rounds} done, "
            f"state {session.state.value}"
        )
        return knowledge

    async def extract_all(
        self,
        session: ExtractionSession,
        max_rounds: int,
        on_round: Optional[Callable[[KnowledgeRecord], None]] = None,
    ) -> KnowledgeRecord:
        """
        Run rounds until the document is exhausted or ``max_rounds`` is reached.

        Args:
            session: The session to advance
            max_rounds: Upper bound on the number of rounds
            on_round: Called with the merged knowledge after every successful
                round, so progress survives a later failure

        Returns:
            The knowledge after the last successful round
        """
        knowledge = None
        for _ in range(max_rounds):
            knowledge = await self.extract_next(session)
            if on_round is not None:
                on_round(knowledge)
            if session.state is SessionState.EXHAUSTED:
                break
        else:
            LOG.warning(
                f"Master {session.master_id}: stopped after {max_rounds} rounds "
                "with content remaining"
            )
        return knowledge
