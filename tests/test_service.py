import json

import pytest

from tcmtwin.exceptions import (
    InsufficientSourcesError,
    LastMasterRemovalError,
    MalformedResponseError,
    MasterNotFoundError,
    MissingDocumentError,
    MissingKnowledgeError,
)
from tcmtwin.extraction.models import KnowledgeBatch, KnowledgeRecord
from tcmtwin.service import TwinService
from tcmtwin.store import JsonMasterRepository

from conftest import SCENARIO_A, FakeBatchRunner, FakeDiagnoser, make_mapping


def other_knowledge() -> KnowledgeRecord:
    return KnowledgeRecord.model_validate(
        {
            "diseaseClassifications": ["脾胃病"],
            "symptomMappings": [make_mapping("脾虚湿困")],
            "masterThoughts": ["治脾以燥湿为先"],
            "hasMoreContent": False,
        }
    )


@pytest.fixture
def repository(tmp_path) -> JsonMasterRepository:
    return JsonMasterRepository(tmp_path)


def make_service(repository, *results, diagnoser=None) -> TwinService:
    return TwinService(repository, batch_runner=FakeBatchRunner(*results), diagnoser=diagnoser)


class TestMasters:
    def test_default_master(self, repository):
        """A fresh data directory starts with one empty master"""
        service = make_service(repository)
        masters = service.list_masters()
        assert [(m.id, m.name, m.knowledge) for m in masters] == [("1", "泰斗 1", None)]
        assert service.current_master().id == "1"

    def test_create_selects_and_persists(self, repository):
        service = make_service(repository)
        master = service.create_master()

        assert master.name == "泰斗 2"
        assert service.current_master() == master
        reloaded = make_service(repository)
        assert [m.id for m in reloaded.list_masters()] == ["1", master.id]
        assert reloaded.current_master().id == master.id

    def test_rename(self, repository):
        service = make_service(repository)
        service.rename_master("1", "张仲景")
        assert make_service(repository).get_master("1").name == "张仲景"

    def test_unknown_master(self, repository):
        with pytest.raises(MasterNotFoundError):
            make_service(repository).get_master("missing")

    def test_cannot_delete_last(self, repository):
        with pytest.raises(LastMasterRemovalError):
            make_service(repository).delete_master("1")

    def test_delete_reselects(self, repository):
        service = make_service(repository)
        master = service.create_master("叶天士")
        service.delete_master(master.id)

        assert [m.id for m in service.list_masters()] == ["1"]
        assert service.current_master().id == "1"


class TestExtraction:
    async def test_requires_document(self, repository):
        with pytest.raises(MissingDocumentError):
            await make_service(repository).run_extraction("1", continuing=False)

    async def test_scenario_a(self, repository, scenario_a_batch):
        """A first round stores the batch on the master and the document in the cache"""
        service = make_service(repository, scenario_a_batch)
        service.attach_document("1", "医案".encode("utf-8"), "text/plain", "医案.txt")

        knowledge = await service.run_extraction("1", continuing=False)

        assert knowledge.to_json_dict() == SCENARIO_A
        reloaded = make_service(repository)
        assert reloaded.get_master("1").knowledge.to_json_dict() == SCENARIO_A
        assert reloaded.documents["1"].name == "医案.txt"
        assert reloaded.documents["1"].payload == "医案".encode("utf-8")

    async def test_continue_after_restart(self, repository, scenario_a_batch):
        """The cached document resumes a session in a new service instance"""
        first = make_service(repository, scenario_a_batch.model_copy(update={"has_more_content": True}))
        first.attach_document("1", b"text", "text/plain", "a.txt")
        await first.run_extraction("1", continuing=False)

        batch = KnowledgeBatch.model_validate(
            {"symptomMappings": [make_mapping("脾虚湿困")], "hasMoreContent": False}
        )
        second = make_service(repository, batch)
        knowledge = await second.run_extraction("1", continuing=True)

        assert second.controller.batch_runner.priors[0].disease_classifications == ["外感发热"]
        assert len(knowledge.symptom_mappings) == 2
        assert knowledge.has_more_content is False

    async def test_failed_round_keeps_knowledge(self, repository, scenario_a_record):
        service = make_service(repository, MalformedResponseError())
        service.get_master("1").knowledge = scenario_a_record
        service.attach_document("1", b"text", "text/plain", "a.txt")
        before = service.get_master("1").knowledge

        with pytest.raises(MalformedResponseError):
            await service.run_extraction("1", continuing=True)

        assert service.get_master("1").knowledge == before

    async def test_run_to_completion(self, repository):
        batches = [
            KnowledgeBatch.model_validate(
                {"diseaseClassifications": [f"病{i}"], "hasMoreContent": i < 2}
            )
            for i in range(3)
        ]
        service = make_service(repository, *batches)
        service.attach_document("1", b"text", "text/plain", "a.txt")

        knowledge = await service.run_to_completion("1", max_rounds=10)

        assert knowledge.disease_classifications == ["病0", "病1", "病2"]
        assert make_service(repository).get_master("1").knowledge == knowledge

    def test_attach_resets_flag(self, repository, scenario_a_record):
        """Attaching a new document keeps knowledge but makes progress unknown"""
        service = make_service(repository)
        service.get_master("1").knowledge = scenario_a_record

        service.attach_document("1", b"next", "text/plain", "b.txt")

        knowledge = service.get_master("1").knowledge
        assert knowledge.has_more_content is None
        assert knowledge.disease_classifications == ["外感发热"]


class TestFusion:
    def test_requires_two_sources(self, repository, scenario_a_record):
        service = make_service(repository)
        service.get_master("1").knowledge = scenario_a_record
        service.create_master("叶天士")

        with pytest.raises(InsufficientSourcesError):
            service.merge_masters()

    def test_same_master_twice_is_one_source(self, repository, scenario_a_record):
        """Listing one master twice does not count as two sources"""
        service = make_service(repository)
        service.get_master("1").knowledge = scenario_a_record

        with pytest.raises(InsufficientSourcesError):
            service.merge_masters(["1", "1"])

    def test_duplicate_ids_fused_once(self, repository, scenario_a_record):
        service = make_service(repository)
        service.get_master("1").knowledge = scenario_a_record
        other = service.create_master("叶天士", knowledge=other_knowledge())

        knowledge, name = service.merge_masters(["1", other.id, "1"])

        assert name == "融合泰斗 (2)"
        assert [m.syndrome for m in knowledge.symptom_mappings] == ["风寒束表", "脾虚湿困"]

    def test_merge_all(self, repository, scenario_a_record):
        service = make_service(repository)
        service.get_master("1").knowledge = scenario_a_record
        service.create_master("叶天士", knowledge=other_knowledge())
        service.create_master("空")

        knowledge, name = service.merge_masters()

        assert name == "融合泰斗 (2)"
        assert knowledge.disease_classifications == ["外感发热", "脾胃病"]
        assert len(knowledge.symptom_mappings) == 2

    def test_fused_master_is_independent(self, repository, scenario_a_record):
        service = make_service(repository)
        service.get_master("1").knowledge = scenario_a_record
        other = service.create_master("叶天士", knowledge=other_knowledge())

        fused = service.create_fused_master(["1", other.id])

        assert fused.name == "融合泰斗 (2)"
        assert service.current_master() == fused
        assert len(service.list_masters()) == 3
        assert service.get_master("1").knowledge == scenario_a_record


class TestDiagnosisAndExport:
    async def test_diagnose_passes_knowledge(self, repository, scenario_a_record):
        diagnoser = FakeDiagnoser()
        service = make_service(repository, diagnoser=diagnoser)
        service.get_master("1").knowledge = scenario_a_record

        answer = await service.diagnose("1", "发热恶寒")

        assert answer == "### 1. 辨证过程"
        assert diagnoser.calls == [(scenario_a_record, "发热恶寒")]

    def test_export(self, repository, scenario_a_record):
        service = make_service(repository)
        service.get_master("1").knowledge = scenario_a_record

        content = service.export_knowledge("1")

        assert json.loads(content) == SCENARIO_A
        assert "外感发热" in content
        assert service.export_filename("1") == "泰斗-1-agent.json"

    def test_export_without_knowledge(self, repository):
        with pytest.raises(MissingKnowledgeError):
            make_service(repository).export_knowledge("1")

    def test_export_filename_has_no_path_separators(self, repository):
        service = make_service(repository)
        service.rename_master("1", "张/仲景 Master\\2")
        assert service.export_filename("1") == "张-仲景-master-2-agent.json"
