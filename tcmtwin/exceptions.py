"""
Custom exceptions for tcmtwin.

Each error carries a short message that can be shown to the user as-is.
"""


class TwinError(Exception):
    """Base exception for all tcmtwin errors."""

    message = "操作失败。"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    @property
    def user_message(self) -> str:
        return str(self)


class EmptyResponseError(TwinError):
    """The model returned no text."""

    message = "模型响应被拦截或为空，请尝试更换文档内容。"


class MalformedResponseError(TwinError):
    """The model output is not JSON matching the knowledge schema."""

    message = "解析提取的知识失败。文档可能过于复杂，或者单次提取量过大导致响应被截断。"


class NoExtractableKnowledgeError(TwinError):
    """A first extraction round found nothing."""

    message = "未能从文档中提取到有效的中医知识。可能是文档内容不包含相关信息，或者模型无法解析该内容。"


class InsufficientSourcesError(TwinError):
    """Fusion was requested with fewer than two knowledgeable masters."""

    message = "至少需要两位已提取知识的泰斗才能进行融合。"


class InvalidQueryError(TwinError):
    """Diagnosis was requested without knowledge or without symptoms."""

    message = "请先提取知识并填写症状描述。"


class PayloadTooLargeError(TwinError):
    """Document exceeds the configured size ceiling."""

    message = "文件过大，请上传小于 15MB 的文件。"


class UnsupportedFormatError(TwinError):
    """Document type cannot be decoded."""

    message = "暂不支持该文件格式，请上传 PDF、TXT 或 DOCX 文件。"


class MissingDocumentError(TwinError):
    """An extraction round was requested but no document is attached."""

    message = "请先选择要上传的文件。"


class MissingKnowledgeError(TwinError):
    """The master has no extracted knowledge yet."""

    message = "该泰斗尚未提取任何知识。"


class MasterNotFoundError(TwinError):
    """No master with the given id."""

    message = "未找到该泰斗。"


class LastMasterRemovalError(TwinError):
    """At least one master must always exist."""

    message = "至少需要保留一位泰斗。"
