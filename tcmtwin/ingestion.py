import io
import logging
from pathlib import Path

from docx import Document

from tcmtwin.exceptions import PayloadTooLargeError, UnsupportedFormatError
from tcmtwin.models import SourceDocument

LOG = logging.getLogger(__name__)

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/plain",
}


def docx_to_text(data: bytes) -> str:
    """Extract the raw paragraph text of a .docx file."""
    document = Document(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


def load_document(file_path: str | Path, max_bytes: int) -> SourceDocument:
    """
    Read a file into a SourceDocument the extraction agent can consume.

    Args:
        file_path: Path to a .pdf, .txt, .md or .docx file
        max_bytes: Size ceiling for the file

    Returns:
        SourceDocument; .docx files are converted to plain text

    Raises:
        FileNotFoundError: If the file doesn't exist
        PayloadTooLargeError: If the file exceeds ``max_bytes``
        UnsupportedFormatError: If the file type is not supported
    """
    file_path = Path(file_path)

    if not file_path.is_file():
        raise FileNotFoundError(f"Document not found: {file_path}")

    size = file_path.stat().st_size
    if size > max_bytes:
        raise PayloadTooLargeError(
            f"文件过大，请上传小于 {max_bytes / 1024 / 1024:.0f}MB 的文件。"
        )

    suffix = file_path.suffix.lower()
    if suffix == ".doc":
        raise UnsupportedFormatError("暂不支持 .doc 格式，请将其另存为 .docx 格式后重新上传。")

    data = file_path.read_bytes()

    if suffix == ".docx":
        try:
            text = docx_to_text(data)
        except Exception as e:
            raise UnsupportedFormatError("无法解析该 DOCX 文件。") from e
        LOG.info(f"Converted {file_path.name} to {len(text)} characters of text")
        return SourceDocument(
            payload=text.encode("utf-8"), mime_type="text/plain", name=file_path.name
        )

    if suffix not in MIME_TYPES:
        raise UnsupportedFormatError()

    LOG.info(f"Loaded {file_path.name} ({size} bytes)")
    return SourceDocument(payload=data, mime_type=MIME_TYPES[suffix], name=file_path.name)
