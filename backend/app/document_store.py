from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .canvas import RenderedPage, close_pages
from .models import ExtractedField

logger = logging.getLogger(__name__)

ANONYMOUS_CLIENT = "anonymous"
DEFAULT_TTL_SECONDS = 1800.0
DEFAULT_MAX_DOCUMENTS = 100


@dataclass
class DocumentRecord:
    document_id: str
    client_id: str
    pages: List[RenderedPage]
    fields: List[ExtractedField] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    def page(self, number: int) -> Optional[RenderedPage]:
        for rendered in self.pages:
            if rendered.page == number:
                return rendered
        return None


class DocumentStore:
    """Holds the rasters of the latest document uploaded by each client.

    Registering a new document releases the previous one of the same client
    first, so highlights can never be drawn against an outdated upload.
    Documents older than ``ttl_seconds`` are dropped, and when more than
    ``max_documents`` clients hold one the oldest documents are dropped first.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_documents: int = DEFAULT_MAX_DOCUMENTS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._documents: Dict[str, DocumentRecord] = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self._max_documents = max(1, max_documents)
        self._clock = clock

    def _is_expired(self, record: DocumentRecord, now: float) -> bool:
        return now - record.created_at > self._ttl_seconds

    def _evict_locked(self, now: float, keep: Optional[str] = None) -> List[DocumentRecord]:
        evicted = [record for record in self._documents.values() if self._is_expired(record, now)]
        for record in evicted:
            del self._documents[record.client_id]
        overflow = len(self._documents) - self._max_documents
        if overflow > 0:
            candidates = [record for record in self._documents.values() if record.client_id != keep]
            oldest = sorted(candidates, key=lambda record: record.created_at)[:overflow]
            for record in oldest:
                del self._documents[record.client_id]
            evicted.extend(oldest)
        return evicted

    def _close_evicted(self, evicted: List[DocumentRecord]) -> None:
        for record in evicted:
            close_pages(record.pages)
            logger.debug("Evicted document %s of %s", record.document_id, record.client_id)

    def release(self, client_id: str) -> None:
        with self._lock:
            previous = self._documents.pop(client_id, None)
        if previous is not None:
            close_pages(previous.pages)
            logger.debug("Released document %s of %s", previous.document_id, client_id)

    def register(self, client_id: str, pages: List[RenderedPage]) -> DocumentRecord:
        now = self._clock()
        record = DocumentRecord(
            document_id=uuid.uuid4().hex,
            client_id=client_id,
            pages=pages,
            created_at=now,
        )
        with self._lock:
            previous = self._documents.get(client_id)
            self._documents[client_id] = record
            evicted = self._evict_locked(now, keep=client_id)
        if previous is not None:
            close_pages(previous.pages)
        self._close_evicted(evicted)
        return record

    def update_fields(self, client_id: str, document_id: str, fields: List[ExtractedField]) -> bool:
        with self._lock:
            record = self._documents.get(client_id)
            if record is None or record.document_id != document_id:
                return False
            record.fields = list(fields)
            return True

    def get(self, client_id: str, document_id: str) -> Optional[DocumentRecord]:
        with self._lock:
            evicted = self._evict_locked(self._clock())
            record = self._documents.get(client_id)
        self._close_evicted(evicted)
        if record is None or record.document_id != document_id:
            return None
        return record

    def discard(self, client_id: str, document_id: str) -> bool:
        with self._lock:
            record = self._documents.get(client_id)
            if record is None or record.document_id != document_id:
                return False
            del self._documents[client_id]
        close_pages(record.pages)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)
