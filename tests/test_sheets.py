# tests/test_sheets.py

"""
Ce qu'on teste :
→ upsert idempotent : une ligne par deal, jamais de doublon
→ soft delete : seule la colonne statut change
→ en-tête écrit une seule fois
→ statistiques de la feuille

Ce qu'on ne teste PAS :
→ la vraie API Google (FakeWorksheet en mémoire)
"""

from conftest import FakeClient, FakeSpreadsheet, FakeWorksheet, make_row
from connectors.sheets.google_sheets import GoogleSheetsStore
from models import DeleteAction, SHEET_HEADERS, UpsertAction


class TestHeaders:

    def test_headers_written_on_empty_sheet(self, store, worksheet):
        assert store.ensure_headers() is True
        assert worksheet.rows[0] == SHEET_HEADERS

    def test_headers_not_rewritten(self, store, worksheet):
        store.ensure_headers()
        assert store.ensure_headers() is False
        assert len(worksheet.rows) == 1


class TestUpsert:

    def test_first_upsert_appends(self, store, worksheet):
        result = store.upsert(make_row())

        assert result.action == UpsertAction.CREATED
        assert result.row is None
        assert len(worksheet.rows) == 2
        assert worksheet.rows[1][0] == 31415

    def test_second_upsert_updates_same_row(self, store, worksheet):
        store.upsert(make_row())
        result = store.upsert(make_row(name="Поставка оборудования (v2)"))

        assert result.action == UpsertAction.UPDATED
        assert result.row == 2
        assert len(worksheet.rows) == 2
        assert worksheet.rows[1][1] == "Поставка оборудования (v2)"

    def test_repeated_upserts_keep_one_row(self, store, worksheet):
        for _ in range(3):
            store.upsert(make_row())
        store.upsert(make_row(deal_id=27182))

        ids = [r[0] for r in worksheet.rows[1:]]
        assert ids == [31415, 27182]

    def test_update_writes_full_row_range(self, store, worksheet):
        store.upsert(make_row())
        store.upsert(make_row())

        assert ("update", "A2:M2") in worksheet.calls

    def test_lookup_matches_text_ids(self, settings):
        ws = FakeWorksheet([SHEET_HEADERS, ["31415"] + [""] * 12])
        store = GoogleSheetsStore(settings, client=FakeClient(FakeSpreadsheet(ws)))

        assert store.find_row(31415) == 2
        assert store.find_row("31415") == 2

    def test_header_never_matches(self, settings):
        ws = FakeWorksheet([["ID"] + SHEET_HEADERS[1:]])
        store = GoogleSheetsStore(settings, client=FakeClient(FakeSpreadsheet(ws)))

        assert store.find_row("ID") is None

    def test_read_row_round_trip(self, store):
        row = make_row()
        store.upsert(row)

        assert store.read_row(2) == row


class TestSoftDelete:

    def test_marks_only_status_column(self, store, worksheet):
        store.upsert(make_row())
        before = list(worksheet.rows[1])

        result = store.soft_delete(31415)

        assert result.action == DeleteAction.DELETED
        assert result.row == 2
        assert worksheet.rows[1][11] == "Deleted"
        assert worksheet.rows[1][:11] == before[:11]
        assert worksheet.rows[1][12] == before[12]
        assert ("update", "L2") in worksheet.calls

    def test_unknown_deal_is_not_found(self, store, worksheet):
        store.upsert(make_row())

        result = store.soft_delete(99999)

        assert result.action == DeleteAction.NOT_FOUND
        assert result.row is None
        assert worksheet.rows[1][11] == "Active"


class TestStats:

    def test_counts_active_and_deleted(self, store):
        store.upsert(make_row(deal_id=1))
        store.upsert(make_row(deal_id=2))
        store.upsert(make_row(deal_id=3))
        store.soft_delete(2)

        stats = store.stats()

        assert stats.total_rows == 4
        assert stats.data_rows == 3
        assert stats.active_deals == 2
        assert stats.deleted_deals == 1

    def test_empty_sheet(self, store):
        stats = store.stats().to_dict()

        assert stats["totalRows"] == 0
        assert stats["dataRows"] == 0
        assert stats["activeDeals"] == 0


class TestAudit:

    def test_append_goes_to_audit_tab(self, settings, worksheet):
        audit_ws = FakeWorksheet()
        store = GoogleSheetsStore(
            settings, client=FakeClient(FakeSpreadsheet(worksheet, audit_ws))
        )

        store.append_audit(["2025-01-01T00:00:00+00:00", "WEBHOOK_SYNC", 1, "{}", "test"])

        assert audit_ws.rows == [["2025-01-01T00:00:00+00:00", "WEBHOOK_SYNC", 1, "{}", "test"]]
        assert worksheet.rows == []
