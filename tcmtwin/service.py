import json
import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from tcmtwin.diagnosis.models import DiagnosisQuery
from tcmtwin.exceptions import (
    LastMasterRemovalError,
    MasterNotFoundError,
    MissingDocumentError,
    MissingKnowledgeError,
)
from tcmtwin.extraction.merge import fuse, suggest_fusion_name
from tcmtwin.extraction.models import KnowledgeRecord
from tcmtwin.extraction.session import (
    BatchRunner,
    ContinuationController,
    ExtractionSession,
    SessionState,
)
from tcmtwin.models import Master, SourceDocument
from tcmtwin.store import JsonMasterRepository

LOG = logging.getLogger(__name__)

Diagnoser = Callable[
    [Optional[KnowledgeRecord], Union[str, DiagnosisQuery]], Awaitable[str]
]


class TwinService:
    """
    Host-side facade over masters, their documents and the extraction and
    diagnosis core.

    Operations on the same master must not run concurrently: two rounds
    would read the same prior knowledge and the later save would win.
    """

    def __init__(
        self,
        repository: JsonMasterRepository,
        batch_runner: Optional[BatchRunner] = None,
        diagnoser: Optional[Diagnoser] = None,
    ):
        self.repository = repository
        self.controller = ContinuationController(batch_runner)
        if diagnoser is None:
            from tcmtwin.diagnosis.agents import diagnose

            diagnoser = diagnose
        self.diagnoser = diagnoser

        self.masters: List[Master] = repository.load()
        self.documents: Dict[str, SourceDocument] = repository.load_documents()
        self._current_id = repository.load_current_id()

    # Masters

    def list_masters(self) -> List[Master]:
        return list(self.masters)

    def get_master(self, master_id: str) -> Master:
        for master in self.masters:
            if master.id == master_id:
                return master
        raise MasterNotFoundError(f"未找到泰斗: {master_id}")

    def current_master(self) -> Master:
        """The selected master, falling back to the first one."""
        if self._current_id is not None:
            for master in self.masters:
                if master.id == self._current_id:
                    return master
        return self.masters[0]

    def select_master(self, master_id: str) -> Master:
        master = self.get_master(master_id)
        self._current_id = master.id
        self.repository.save_current_id(master.id)
        return master

    def create_master(
        self, name: Optional[str] = None, knowledge: Optional[KnowledgeRecord] = None
    ) -> Master:
        master = Master(name=name or f"泰斗 {len(self.masters) + 1}", knowledge=knowledge)
        self.masters.append(master)
        self._save_masters()
        self.select_master(master.id)
        LOG.info(f"Created master {master.name} ({master.id})")
        return master

    def rename_master(self, master_id: str, name: str) -> Master:
        master = self.get_master(master_id)
        master.name = name
        self._save_masters()
        return master

    def delete_master(self, master_id: str) -> None:
        master = self.get_master(master_id)
        if len(self.masters) <= 1:
            raise LastMasterRemovalError()

        self.masters.remove(master)
        self._save_masters()
        if self.documents.pop(master_id, None) is not None:
            self.repository.save_documents(self.documents)
        if self._current_id == master_id:
            self.select_master(self.masters[0].id)
        LOG.info(f"Deleted master {master.name} ({master.id})")

    # Extraction

    def session_for(self, master_id: str) -> ExtractionSession:
        master = self.get_master(master_id)
        return ExtractionSession(
            master_id=master.id,
            document=self.documents.get(master.id),
            knowledge=master.knowledge,
        )

    def attach_document(
        self, master_id: str, payload: bytes, mime_type: str, name: str
    ) -> ExtractionSession:
        """Make a document the master's current one; knowledge carries forward."""
        session = self.session_for(master_id)
        session.attach(SourceDocument(payload=payload, mime_type=mime_type, name=name))

        master = self.get_master(master_id)
        master.knowledge = session.knowledge
        self.documents[master_id] = session.document
        self._save_masters()
        self.repository.save_documents(self.documents)
        return session

    async def run_extraction(self, master_id: str, continuing: bool) -> KnowledgeRecord:
        """
        Run one extraction round for a master and store the merged knowledge.

        Args:
            master_id: The master to extract for
            continuing: True to continue with the master's current document,
                False for the first round on a freshly attached document
        """
        session = self.session_for(master_id)
        if session.document is None:
            raise MissingDocumentError()

        if continuing and session.state is SessionState.READY:
            LOG.info(f"Master {master_id}: no round has run on this document yet")
        elif not continuing and session.state is not SessionState.READY:
            LOG.warning(
                f"Master {master_id}: document was already extracted "
                f"(state {session.state.value}), extracting again"
            )

        knowledge = await self.controller.extract_next(session)
        self._store_knowledge(master_id, knowledge)
        return knowledge

    async def run_to_completion(self, master_id: str, max_rounds: int) -> KnowledgeRecord:
        """Run rounds until the document is exhausted, storing after each round."""
        session = self.session_for(master_id)
        if session.document is None:
            raise MissingDocumentError()

        return await self.controller.extract_all(
            session,
            max_rounds,
            on_round=lambda knowledge: self._store_knowledge(master_id, knowledge),
        )

    def _store_knowledge(self, master_id: str, knowledge: KnowledgeRecord) -> None:
        self.get_master(master_id).knowledge = knowledge
        self._save_masters()

    # Fusion

    def merge_masters(
        self, master_ids: Optional[Sequence[str]] = None
    ) -> Tuple[KnowledgeRecord, str]:
        """
        Fuse the knowledge of several masters.

        Args:
            master_ids: Masters to fuse; None fuses every master with knowledge

        Returns:
            The fused knowledge and a suggested name for a new master
        """
        if master_ids is None:
            sources = [m for m in self.masters if m.has_knowledge]
        else:
            sources = [self.get_master(i) for i in dict.fromkeys(master_ids)]
            sources = [m for m in sources if m.has_knowledge]

        knowledge = fuse([m.knowledge for m in sources])
        return knowledge, suggest_fusion_name(len(sources))

    def create_fused_master(
        self, master_ids: Optional[Sequence[str]] = None, name: Optional[str] = None
    ) -> Master:
        knowledge, suggested_name = self.merge_masters(master_ids)
        return self.create_master(name or suggested_name, knowledge=knowledge)

    # Diagnosis and export

    async def diagnose(self, master_id: str, query: Union[str, DiagnosisQuery]) -> str:
        return await self.diagnoser(self.get_master(master_id).knowledge, query)

    def export_knowledge(self, master_id: str) -> str:
        master = self.get_master(master_id)
        if master.knowledge is None:
            raise MissingKnowledgeError()
        return json.dumps(master.knowledge.to_json_dict(), ensure_ascii=False, indent=2)

    def export_filename(self, master_id: str) -> str:
        slug = re.sub(r"[\s/\\]+", "-", self.get_master(master_id).name).lower()
        return f"{slug}-agent.json"

    def _save_masters(self) -> None:
        self.repository.save(self.masters)
