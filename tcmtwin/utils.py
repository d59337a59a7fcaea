from pathlib import Path
from typing import List

from tcmtwin.extraction.models import KnowledgeRecord, SymptomMapping

PLACEHOLDER = "—"


def _join(values: List[str], sep: str = "、") -> str:
    return sep.join(values) if values else PLACEHOLDER


def _format_mapping(index: int, mapping: SymptomMapping) -> str:
    title = mapping.syndrome or PLACEHOLDER
    if mapping.disease:
        title = f"{mapping.disease} · {title}"

    lines = [
        f"### {index}. {title}",
        f"- **症状:** {_join(mapping.symptoms)}",
        f"- **舌象:** {mapping.tongue or PLACEHOLDER}",
        f"- **脉象:** {mapping.pulse or PLACEHOLDER}",
        f"- **治法:** {mapping.treatment_principle or PLACEHOLDER}",
        f"- **方剂:** {mapping.prescription or PLACEHOLDER}",
        f"- **加减:** {_join(mapping.modifications, '；')}",
    ]
    if mapping.associated_thoughts:
        lines.append(f"- **相关心法:** {_join(mapping.associated_thoughts, '；')}")
    return "\n".join(lines)


def knowledge_to_markdown(name: str, knowledge: KnowledgeRecord) -> str:
    """
    Render a master's knowledge as a Markdown document.

    Args:
        name: Display name of the master
        knowledge: The knowledge record

    Returns:
        Markdown text
    """
    status = {
        True: "文档中仍有未提取的内容",
        False: "文档内容已全部提取",
        None: "提取进度未知",
    }[knowledge.has_more_content]

    diseases = "\n".join(f"- {d}" for d in knowledge.disease_classifications)
    thoughts = "\n".join(f"- {t}" for t in knowledge.master_thoughts)
    mappings = "\n\n".join(
        _format_mapping(i, m) for i, m in enumerate(knowledge.symptom_mappings, start=1)
    )

    return f"""# {name} 知识库

*{status}*

## 疾病分类 ({len(knowledge.disease_classifications)})
{diseases or PLACEHOLDER}

## 泰斗心法 ({len(knowledge.master_thoughts)})
{thoughts or PLACEHOLDER}

## 症-舌-脉-方 映射 ({len(knowledge.symptom_mappings)})

{mappings or PLACEHOLDER}
"""


def save_as_markdown(name: str, knowledge: KnowledgeRecord, output_path: Path) -> None:
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(knowledge_to_markdown(name, knowledge))
