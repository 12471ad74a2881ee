"""Tests for the per-client document registry."""
from backend.app.document_store import DocumentStore
from backend.app.models import ExtractedField, FieldKey


class FakePage:
    def __init__(self, page):
        self.page = page
        self.closed = False

    def close(self):
        self.closed = True


class TestDocumentStore:
    """新しい資料を登録すると前の資料の画像は解放される"""

    def test_register_and_get(self):
        store = DocumentStore()
        record = store.register("user-1", [FakePage(1), FakePage(2)])
        assert len(record.document_id) == 32
        assert store.get("user-1", record.document_id) is record
        assert record.page(2).page == 2
        assert record.page(3) is None

    def test_release_closes_previous_pages(self):
        store = DocumentStore()
        pages = [FakePage(1)]
        old = store.register("user-1", pages)
        store.release("user-1")
        assert pages[0].closed
        assert store.get("user-1", old.document_id) is None
        assert len(store) == 0

    def test_new_document_makes_old_id_stale(self):
        store = DocumentStore()
        first_pages = [FakePage(1)]
        first = store.register("user-1", first_pages)
        second = store.register("user-1", [FakePage(1)])
        assert first.document_id != second.document_id
        assert first_pages[0].closed
        assert store.get("user-1", first.document_id) is None
        assert store.get("user-1", second.document_id) is second

    def test_clients_are_isolated(self):
        store = DocumentStore()
        mine = store.register("user-1", [FakePage(1)])
        theirs_pages = [FakePage(1)]
        store.register("user-2", theirs_pages)
        store.release("user-1")
        assert not theirs_pages[0].closed
        assert store.get("user-2", mine.document_id) is None

    def test_update_fields(self):
        store = DocumentStore()
        record = store.register("user-1", [FakePage(1)])
        fields = [ExtractedField(key=FieldKey.LAND_AREA, value=120.0)]
        assert store.update_fields("user-1", record.document_id, fields)
        assert record.fields == fields
        assert not store.update_fields("user-1", "stale", fields)

    def test_discard(self):
        store = DocumentStore()
        pages = [FakePage(1)]
        record = store.register("user-1", pages)
        assert not store.discard("user-1", "other")
        assert store.discard("user-1", record.document_id)
        assert pages[0].closed
        assert store.get("user-1", record.document_id) is None


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestEviction:
    """古い資料は期限切れ・上限超過で解放される"""

    def test_expired_document_is_released(self):
        clock = FakeClock()
        store = DocumentStore(ttl_seconds=60, clock=clock)
        pages = [FakePage(1)]
        record = store.register("user-1", pages)
        clock.now += 30
        assert store.get("user-1", record.document_id) is record
        clock.now += 31
        assert store.get("user-1", record.document_id) is None
        assert pages[0].closed
        assert len(store) == 0

    def test_oldest_documents_are_dropped_over_capacity(self):
        clock = FakeClock()
        store = DocumentStore(max_documents=2, clock=clock)
        first_pages = [FakePage(1)]
        first = store.register("user-1", first_pages)
        clock.now += 1
        second = store.register("user-2", [FakePage(1)])
        clock.now += 1
        third = store.register("user-3", [FakePage(1)])
        assert len(store) == 2
        assert first_pages[0].closed
        assert store.get("user-1", first.document_id) is None
        assert store.get("user-2", second.document_id) is second
        assert store.get("user-3", third.document_id) is third

    def test_new_document_survives_when_timestamps_tie(self):
        store = DocumentStore(max_documents=1, clock=FakeClock())
        store.register("user-1", [FakePage(1)])
        latest = store.register("user-2", [FakePage(1)])
        assert store.get("user-2", latest.document_id) is latest
        assert len(store) == 1
