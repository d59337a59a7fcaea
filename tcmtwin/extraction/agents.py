import logging
from typing import Optional

from pydantic_ai import Agent, BinaryContent
from pydantic_ai.exceptions import UnexpectedModelBehavior

from tcmtwin.config import model, settings
from tcmtwin.exceptions import EmptyResponseError, NoExtractableKnowledgeError
from tcmtwin.extraction.models import KnowledgeBatch, KnowledgeRecord
from tcmtwin.extraction.protocol import build_extraction_prompt, parse_batch
from tcmtwin.models import SourceDocument
from tcmtwin.schemas import EXTRACTION_SYSTEM_PROMPT, RESPONSE_FORMAT

LOG = logging.getLogger(__name__)

# The raw text is validated by parse_batch, so the agent itself returns a plain string
extraction_agent = Agent(
    model,
    output_type=str,
    instructions=EXTRACTION_SYSTEM_PROMPT,
)


def _document_part(document: SourceDocument):
    if document.is_text:
        return f"文档《{document.name}》内容:\n\n{document.text()}"
    return BinaryContent(data=document.payload, media_type=document.mime_type)


async def run_extraction_batch(
    document: SourceDocument, prior: Optional[KnowledgeRecord] = None
) -> KnowledgeBatch:
    """
    Run one bounded extraction round against a document.

    Args:
        document: The source document
        prior: Knowledge from earlier rounds, if any

    Returns:
        The normalized batch. If the model found nothing new and ``prior`` was
        given, an empty batch with ``has_more_content=False`` is returned, so
        that merging it leaves the prior knowledge unchanged apart from the flag.

    Raises:
        EmptyResponseError: If the model returned no text
        MalformedResponseError: If the output does not match the schema
        NoExtractableKnowledgeError: If a first round found nothing
    """
    prompt = build_extraction_prompt(
        prior,
        max_diseases=settings.max_disease_classifications,
        max_mappings=settings.max_symptom_mappings,
        max_thoughts=settings.max_master_thoughts,
    )

    LOG.info(
        f"Extracting from {document.name or 'document'} ({document.mime_type}, "
        f"{document.size} bytes), {'continuing' if prior else 'first round'}"
    )

    try:
        result = await extraction_agent.run(
            [_document_part(document), prompt],
            model_settings={
                "temperature": settings.temperature,
                "extra_body": {"response_format": RESPONSE_FORMAT},
            },
        )
    except UnexpectedModelBehavior as e:
        LOG.error(f"Model returned no usable response: {e}")
        raise EmptyResponseError() from e

    batch = parse_batch(result.output)

    if batch.is_empty():
        if prior is not None:
            LOG.info("Nothing new in this round, marking document as exhausted")
            return KnowledgeBatch(has_more_content=False)
        raise NoExtractableKnowledgeError()

    LOG.info(
        f"Extracted {len(batch.disease_classifications)} diseases, "
        f"{len(batch.symptom_mappings)} mappings, {len(batch.master_thoughts)} thoughts "
        f"(more content: {batch.has_more_content})"
    )
    return batch
