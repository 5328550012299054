"""Unit tests for the ledger repositories (against the temporary test database)."""

import asyncio
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from src.lib.errors import DatabaseError
from src.models import LotStatus, SymbolChangeAction
from src.services.ledger_store import (
    LotRepository,
    SecurityMetadataRepository,
    SymbolMappingRepository,
    TransactionRepository,
    record_from_transaction,
    transaction_from_record,
)
from src.services.lot_ledger import (
    AccountingMethod,
    apply_sale_to_lots,
    apply_split_to_lots,
    create_lot,
    make_security_id,
    rekey_lot,
)
from src.services.symbol_mapping_store import SymbolMappingStore

ACCOUNT = "Individual"
SECURITY_ID = make_security_id(ACCOUNT, "ABC")


def _lot(quantity: str = "10", cost: str = "100", acquired: date = date(2023, 1, 1)):
    return create_lot(
        SECURITY_ID, ACCOUNT, "ABC", Decimal(quantity), acquired, Decimal(cost), True
    )


@pytest.mark.unit
class TestTransactionConversion:
    """Test suite for record <-> transaction conversion."""

    def test_round_trip(self, make_transaction):
        tx = make_transaction(fees="4.95", description="ABC CORP")

        record = record_from_transaction(tx, ACCOUNT)

        assert record.account == ACCOUNT
        assert transaction_from_record(record) == tx


@pytest.mark.unit
@pytest.mark.asyncio
class TestLotRepository:
    """Test suite for LotRepository."""

    async def test_save_and_get(self):
        repository = LotRepository()
        lot = _lot()

        await repository.save(lot)
        stored = await repository.get_by_id(lot.id)

        assert stored is not None
        assert stored.remaining_quantity == Decimal("10")
        assert stored.status == LotStatus.OPEN
        assert await repository.exists(lot.id)
        assert not await repository.exists("nope")

    async def test_sales_and_adjustments_persisted(self):
        repository = LotRepository()
        lot = _lot()
        apply_sale_to_lots(
            [lot],
            Decimal("4"),
            AccountingMethod.FIFO,
            date(2023, 3, 1),
            Decimal("20"),
            transaction_id="s1",
        )
        apply_split_to_lots([lot], Decimal("2"), date(2023, 6, 1))

        await repository.save(lot)
        stored = await repository.get_by_id(lot.id)

        assert stored.remaining_quantity == Decimal("12")
        assert stored.status == LotStatus.PARTIAL
        assert [sale.transaction_id for sale in stored.sales] == ["s1"]
        assert stored.sales[0].quantity == Decimal("8")
        assert [adj.adjustment_date for adj in stored.adjustments] == [date(2023, 6, 1)]

    async def test_update_detached_lot(self):
        """A loaded lot can be mutated and saved again."""
        repository = LotRepository()
        await repository.save(_lot())

        [lot] = await repository.get_by_security_id(SECURITY_ID)
        apply_sale_to_lots([lot], Decimal("10"), AccountingMethod.FIFO, None, Decimal("1"))
        await repository.save_many([lot])

        [stored] = await repository.get_by_security_id(SECURITY_ID)
        assert stored.status == LotStatus.CLOSED
        assert len(stored.sales) == 1
        assert await repository.get_open_lots(SECURITY_ID) == []

    async def test_queries_are_ordered(self):
        repository = LotRepository()
        later = _lot("5", "60", date(2023, 2, 1))
        earlier = _lot("5", "50", date(2023, 1, 1))
        other = create_lot(
            make_security_id(ACCOUNT, "XYZ"),
            ACCOUNT,
            "XYZ",
            Decimal("1"),
            date(2022, 1, 1),
            Decimal("1"),
            True,
        )
        await repository.save_many([later, earlier, other])

        by_security = await repository.get_by_security_id(SECURITY_ID)
        by_account = await repository.get_by_account(ACCOUNT)
        by_symbol = await repository.get_by_account(ACCOUNT, symbol="abc")

        assert [lot.id for lot in by_security] == [earlier.id, later.id]
        assert [lot.symbol for lot in by_account] == ["ABC", "ABC", "XYZ"]
        assert len(by_symbol) == 2
        assert await repository.get_by_account("Other") == []

    async def test_gathered_calls(self):
        repository = LotRepository()
        first = _lot("1", "10", date(2023, 1, 1))
        second = _lot("2", "20", date(2023, 1, 2))

        await asyncio.gather(repository.save(first), repository.save(second))

        assert len(await repository.get_by_security_id(SECURITY_ID)) == 2

    async def test_delete_by_security_id(self):
        repository = LotRepository()
        lot = _lot()
        apply_sale_to_lots([lot], Decimal("1"), AccountingMethod.FIFO, None, Decimal("1"))
        await repository.save(lot)

        deleted = await repository.delete_by_security_id(SECURITY_ID)

        assert deleted == 1
        assert await repository.get_by_id(lot.id) is None

    async def test_replace_moves_lot_with_logs(self):
        repository = LotRepository()
        lot = _lot()
        apply_sale_to_lots(
            [lot], Decimal("4"), AccountingMethod.FIFO, date(2023, 2, 1), Decimal("15")
        )
        await repository.save(lot)
        moved = rekey_lot(lot, make_security_id(ACCOUNT, "XYZ"), "XYZ")

        await repository.replace([lot], [moved])

        assert await repository.get_by_id(lot.id) is None
        stored = await repository.get_by_id(moved.id)
        assert stored.symbol == "XYZ"
        assert stored.remaining_quantity == Decimal("6")
        assert len(stored.sales) == 1

    async def test_save_failure_raises_database_error(self):
        repository = LotRepository()
        with patch(
            "src.services.ledger_store.db_session",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(DatabaseError, match="Failed to save lot"):
                await repository.save(_lot())


@pytest.mark.unit
@pytest.mark.asyncio
class TestTransactionRepository:
    """Test suite for TransactionRepository."""

    async def test_bulk_merge_and_read_back(self, make_transaction):
        repository = TransactionRepository()
        late = make_transaction(on=date(2023, 3, 1))
        undated = make_transaction(on=None)
        early = make_transaction(on=date(2023, 1, 1))

        result = await repository.bulk_merge([late, undated, early], ACCOUNT)
        stored = await repository.get_by_account(ACCOUNT)

        assert result.processed == 3
        assert result.errors == []
        assert [t.id for t in stored] == [early.id, late.id, undated.id]

    async def test_reimport_is_upsert(self, make_transaction):
        repository = TransactionRepository()
        tx = make_transaction(id="same")

        await repository.bulk_merge([tx], ACCOUNT)
        await repository.bulk_merge([tx], ACCOUNT)

        assert len(await repository.get_by_account(ACCOUNT)) == 1

    async def test_same_id_in_two_accounts(self, make_transaction):
        repository = TransactionRepository()
        tx = make_transaction(id="shared")

        await repository.bulk_merge([tx], "Individual")
        await repository.bulk_merge([tx], "Joint")

        assert len(await repository.get_by_account("Individual")) == 1
        assert len(await repository.get_by_account("Joint")) == 1

    async def test_get_by_symbol(self, make_transaction):
        repository = TransactionRepository()
        await repository.bulk_merge(
            [make_transaction(symbol="ABC"), make_transaction(symbol="XYZ")], ACCOUNT
        )

        [tx] = await repository.get_by_symbol(ACCOUNT, "xyz")

        assert tx.symbol == "XYZ"
        assert tx.quantity == Decimal("10")


@pytest.mark.unit
@pytest.mark.asyncio
class TestSecurityMetadataRepository:
    """Test suite for SecurityMetadataRepository."""

    async def test_merges_lot_ids_and_keeps_earliest_date(self):
        repository = SecurityMetadataRepository()

        await repository.save(SECURITY_ID, ACCOUNT, "ABC", date(2023, 2, 1), ["b"])
        await repository.save(SECURITY_ID, ACCOUNT, "ABC", date(2023, 1, 1), ["a", "b"])
        await repository.save(SECURITY_ID, ACCOUNT, "ABC", date(2023, 5, 1), ["c"])

        metadata = await repository.get(SECURITY_ID)
        assert metadata.lot_ids == ["b", "a", "c"]
        assert metadata.acquisition_date == date(2023, 1, 1)
        assert metadata.symbol == "ABC"

    async def test_missing(self):
        assert await SecurityMetadataRepository().get("none") is None

    async def test_delete(self):
        repository = SecurityMetadataRepository()
        await repository.save(SECURITY_ID, ACCOUNT, "ABC", date(2023, 1, 1), ["a"])

        assert await repository.delete(SECURITY_ID)
        assert await repository.get(SECURITY_ID) is None
        assert not await repository.delete(SECURITY_ID)


@pytest.mark.unit
@pytest.mark.asyncio
class TestSymbolMappingRepository:
    """Test suite for SymbolMappingRepository."""

    async def test_store_round_trip(self):
        repository = SymbolMappingRepository()
        store = SymbolMappingStore()
        store.create("AAA", "BBB", date(2020, 1, 1))
        store.create("BBB", "CCC", date(2021, 1, 1))
        store.create(
            "CCC", "CCC", date(2022, 1, 1), SymbolChangeAction.SPLIT, ratio=Decimal("2")
        )

        written = await repository.save_store(store)
        loaded = await repository.load_store()

        assert written == 3
        assert len(loaded) == 3
        assert loaded.get_current_symbol("AAA") == "CCC"
        assert [m.new_symbol for m in await repository.get_mapping_chain("AAA")] == [
            "BBB",
            "CCC",
        ]

    async def test_save_single_mapping(self):
        repository = SymbolMappingRepository()
        mapping = SymbolMappingStore().create("FB", "META", date(2022, 6, 9))

        await repository.save(mapping)

        [stored] = await repository.get_all()
        assert stored.id == "FB_META_2022-06-09"
        assert stored.action == SymbolChangeAction.TICKER_CHANGE
