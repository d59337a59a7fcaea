import logging
from typing import Iterable, List, Optional, Sequence

from tcmtwin.exceptions import InsufficientSourcesError
from tcmtwin.extraction.models import KnowledgeRecord

LOG = logging.getLogger(__name__)


def _union(*groups: Iterable[str]) -> List[str]:
    """Ordered union, first occurrence wins."""
    return list(dict.fromkeys(item for group in groups for item in group))


def merge(base: Optional[KnowledgeRecord], incoming: KnowledgeRecord) -> KnowledgeRecord:
    """
    Fold a new batch (or another master's knowledge) into existing knowledge.

    Disease classifications and master's thoughts are unioned by exact string
    equality. Symptom mappings are appended as they are, since two batches may
    describe distinct clinical patterns with the same surface text. The
    continuation flag is taken from ``incoming``.

    Args:
        base: Knowledge accumulated so far, or None before the first round
        incoming: The newer knowledge

    Returns:
        A new KnowledgeRecord; neither input is modified
    """
    if base is None:
        return KnowledgeRecord.model_validate(incoming.model_dump())

    merged = KnowledgeRecord(
        disease_classifications=_union(
            base.disease_classifications, incoming.disease_classifications
        ),
        symptom_mappings=[
            m.model_copy(deep=True)
            for m in [*base.symptom_mappings, *incoming.symptom_mappings]
        ],
        master_thoughts=_union(base.master_thoughts, incoming.master_thoughts),
        has_more_content=incoming.has_more_content,
    )

    LOG.debug(
        f"Merged knowledge: {len(merged.disease_classifications)} diseases, "
        f"{len(merged.symptom_mappings)} mappings, {len(merged.master_thoughts)} thoughts"
    )
    return merged


def fuse(records: Sequence[Optional[KnowledgeRecord]]) -> KnowledgeRecord:
    """
    Combine the knowledge of several masters into one independent record.

    Masters without knowledge are skipped. The fused record is backed by no
    document, so its continuation flag is unknown.

    Raises:
        InsufficientSourcesError: If fewer than two records carry knowledge
    """
    sources = [r for r in records if r is not None]
    if len(sources) < 2:
        raise InsufficientSourcesError()

    fused: Optional[KnowledgeRecord] = None
    for record in sources:
        fused = merge(fused, record)

    fused.has_more_content = None
    LOG.info(f"Fused knowledge of {len(sources)} masters")
    return fused


def suggest_fusion_name(source_count: int) -> str:
    return f"融合泰斗 ({source_count})"
