import base64
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from tcmtwin.models import Master, SourceDocument

LOG = logging.getLogger(__name__)

DEFAULT_MASTER_ID = "1"


def default_masters() -> List[Master]:
    return [Master(id=DEFAULT_MASTER_ID, name="泰斗 1")]


class JsonMasterRepository:
    """
    Persists masters, their current documents and the selected master as
    JSON files in a data directory.
    """

    MASTERS_FILE = "masters.json"
    DOCUMENTS_FILE = "documents.json"
    STATE_FILE = "state.json"

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    def _read(self, filename: str) -> Optional[object]:
        path = self.data_dir / filename
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            LOG.error(f"Failed to parse {path}, ignoring it: {e}")
            return None

    def _write(self, filename: str, data: object) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self.data_dir / filename
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        tmp_path.replace(path)

    def load(self) -> List[Master]:
        """Load the master list; an absent or unreadable file yields the default master."""
        data = self._read(self.MASTERS_FILE)
        if not isinstance(data, list) or not data:
            return default_masters()
        try:
            return [Master.model_validate(item) for item in data]
        except ValidationError as e:
            LOG.error(f"Stored masters do not match the schema, ignoring them: {e}")
            return default_masters()

    def save(self, masters: List[Master]) -> None:
        self._write(
            self.MASTERS_FILE,
            [m.model_dump(mode="json", by_alias=True) for m in masters],
        )

    def load_documents(self) -> Dict[str, SourceDocument]:
        data = self._read(self.DOCUMENTS_FILE)
        if not isinstance(data, dict):
            return {}

        documents = {}
        for master_id, doc in data.items():
            try:
                documents[master_id] = SourceDocument(
                    payload=base64.b64decode(doc["payload"]),
                    mime_type=doc["mimeType"],
                    name=doc.get("name", ""),
                )
            except (KeyError, TypeError, ValueError) as e:
                LOG.warning(f"Skipping malformed cached document for {master_id}: {e}")
        return documents

    def save_documents(self, documents: Dict[str, SourceDocument]) -> None:
        self._write(
            self.DOCUMENTS_FILE,
            {
                master_id: {
                    "payload": base64.b64encode(doc.payload).decode("ascii"),
                    "mimeType": doc.mime_type,
                    "name": doc.name,
                }
                for master_id, doc in documents.items()
            },
        )

    def load_current_id(self) -> Optional[str]:
        data = self._read(self.STATE_FILE)
        if isinstance(data, dict):
            return data.get("currentMasterId")
        return None

    def save_current_id(self, master_id: str) -> None:
        self._write(self.STATE_FILE, {"currentMasterId": master_id})
