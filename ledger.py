import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from errors import StorageError
from persistence import JsonDocument

logger = logging.getLogger("certportal.ledger")


# ----------- Data models -----------

class CertificateRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    email: str
    file_name: str = Field(alias="fileName")
    data: Dict[str, str] = {}                            # display values drawn on the image
    generated_at: datetime = Field(alias="generatedAt")
    template_id: str = Field(alias="templateId")
    template_file: Optional[str] = Field(default=None, alias="templateFile")
    certificate_id: Optional[str] = Field(default=None, alias="certificateId")  # missing on early records
    batch_id: int = Field(alias="batchId")               # batch timestamp, ms

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def group_by_date(records: Iterable[CertificateRecord]) -> "OrderedDict[str, List[CertificateRecord]]":
    """
    Partition records by the server-local calendar date they were generated on.
    Display only; keeps the input order inside each group.
    """
    groups: "OrderedDict[str, List[CertificateRecord]]" = OrderedDict()
    for record in records:
        generated = record.generated_at
        if generated.tzinfo is None:
            generated = generated.replace(tzinfo=timezone.utc)
        key = generated.astimezone().date().isoformat()
        groups.setdefault(key, []).append(record)
    return groups


# ----------- Ledger -----------

class CertificateLedger:
    """
    Every generated certificate, in generation order. Persisted as one JSON list.

    Stored entries that do not parse as a CertificateRecord are kept as the raw
    dicts they were read as, in place, and written back unchanged. They are not
    returned by lookups.
    """

    def __init__(self, document: JsonDocument):
        self._document = document
        self._lock = threading.Lock()
        self._entries: List[Union[CertificateRecord, Dict[str, Any]]] = []

        stored = document.load([])
        if not isinstance(stored, list):
            raise StorageError(f"{document.path} does not hold a list of certificates")

        for raw in stored:
            try:
                self._entries.append(CertificateRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning("Keeping unreadable ledger entry as stored: %s", e)
                self._entries.append(raw)
        self._records = self._parsed(self._entries)
        logger.info(
            "Loaded %d certificate record(s), %d kept unparsed",
            len(self._records),
            len(self._entries) - len(self._records),
        )

    @staticmethod
    def _parsed(entries) -> List[CertificateRecord]:
        return [e for e in entries if isinstance(e, CertificateRecord)]

    def __len__(self) -> int:
        return len(self._records)

    def snapshot(self) -> List[CertificateRecord]:
        return list(self._records)

    def append_batch(self, records: List[CertificateRecord]) -> None:
        """
        Append a whole batch and rewrite the file; the in-memory list only
        changes when the write succeeded.
        """
        if not records:
            return
        with self._lock:
            updated = self._entries + list(records)
            self._document.save([
                e.to_json() if isinstance(e, CertificateRecord) else e
                for e in updated
            ])
            self._entries = updated
            self._records = self._parsed(updated)
        logger.info("Ledger updated with %d record(s), %d total", len(records), len(updated))

    def find_by_email(self, email: str) -> List[CertificateRecord]:
        wanted = email.lower()
        return [r for r in self._records if r.email.lower() == wanted]

    def last_batch_id(self) -> int:
        return max((r.batch_id for r in self._records), default=0)
