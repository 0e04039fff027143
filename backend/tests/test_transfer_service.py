# Overview: Pytest coverage for the inter-branch transfer workflow.

import re

import pytest

from stockledger.errors import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from stockledger.models import Branch, StockMovement, StockTransfer
from stockledger.models.stock import (
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    TRANSFER_STATUS_CANCELLED,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_PENDING,
)
from stockledger.services import stock_service, transfer_service
from stockledger.services.auth_service import create_user
from stockledger.services.directory_service import Actor

from conftest import pause_after_locked_read, run_concurrently


def _create(product, source, destination, quantity, actor, **kwargs):
    return transfer_service.create_transfer(
        product_id=product.id,
        from_branch_id=source.id,
        to_branch_id=destination.id,
        quantity=quantity,
        actor=actor,
        **kwargs,
    )


class TestCreateTransfer:
    """Creating a transfer reserves stock at the source."""

    def test_create_reserves_source(self, stock, oil, branch_main, branch_north, admin):
        stock(oil, branch_main, 100)

        transfer = _create(oil, branch_main, branch_north, 30, admin, notes="Weekly top-up")

        assert transfer.status == TRANSFER_STATUS_PENDING
        assert re.fullmatch(r"TR-\d{4}-000001", transfer.transfer_number)
        source = stock_service.require_record(oil.id, branch_main.id)
        assert source.reserved_quantity == 30
        assert source.quantity == 100

    def test_numbers_are_sequential(self, stock, oil, branch_main, branch_north, admin):
        stock(oil, branch_main, 100)
        first = _create(oil, branch_main, branch_north, 1, admin)
        second = _create(oil, branch_main, branch_north, 1, admin)
        assert first.transfer_number[-6:] == "000001"
        assert second.transfer_number[-6:] == "000002"

    def test_same_branch_rejected_before_reserving(self, stock, oil, branch_main, admin):
        record = stock(oil, branch_main, 100)

        with pytest.raises(ValidationError):
            _create(oil, branch_main, branch_main, 5, admin)

        assert stock_service.get_record(record.id).reserved_quantity == 0

    def test_insufficient_stock(self, db_session, stock, oil, branch_main, branch_north, admin):
        stock(oil, branch_main, 10)

        with pytest.raises(InsufficientStockError):
            _create(oil, branch_main, branch_north, 11, admin)

        assert db_session.query(StockTransfer).count() == 0

    def test_source_without_record(self, oil, branch_main, branch_north, admin):
        with pytest.raises(NotFoundError):
            _create(oil, branch_main, branch_north, 1, admin)


class TestAdvanceTransfer:
    """pending -> in-transit -> completed, with cancellation until completion."""

    def test_full_lifecycle_creates_destination_with_source_pricing(
        self, db_session, stock, oil, branch_main, branch_north, admin
    ):
        stock(oil, branch_main, 100, selling_price_cents=260, reorder_point=15)
        transfer = _create(oil, branch_main, branch_north, 30, admin)

        shipped = transfer_service.advance_transfer(
            transfer_id=transfer.id, target_status=TRANSFER_STATUS_IN_TRANSIT, actor=admin
        )
        assert shipped.shipped_at is not None
        assert shipped.approved_by_user_id == admin.user_id

        done = transfer_service.advance_transfer(
            transfer_id=transfer.id, target_status=TRANSFER_STATUS_COMPLETED, actor=admin
        )
        assert done.status == TRANSFER_STATUS_COMPLETED
        assert done.received_by_user_id == admin.user_id

        source = stock_service.require_record(oil.id, branch_main.id)
        destination = stock_service.require_record(oil.id, branch_north.id)
        assert (source.quantity, source.reserved_quantity) == (70, 0)
        assert (destination.quantity, destination.reserved_quantity) == (30, 0)
        assert destination.selling_price_cents == 260
        assert destination.reorder_point == 15

        kinds = {
            m.movement_type
            for m in db_session.query(StockMovement).filter_by(reference_id=transfer.id).all()
        }
        assert kinds == {MOVEMENT_TRANSFER_IN, MOVEMENT_TRANSFER_OUT}

    def test_existing_destination_is_incremented(self, stock, oil, branch_main, branch_north, admin):
        stock(oil, branch_main, 50, selling_price_cents=250)
        stock(oil, branch_north, 5, selling_price_cents=300)
        transfer = _create(oil, branch_main, branch_north, 20, admin)

        for status in (TRANSFER_STATUS_IN_TRANSIT, TRANSFER_STATUS_COMPLETED):
            transfer_service.advance_transfer(transfer_id=transfer.id, target_status=status, actor=admin)

        destination = stock_service.require_record(oil.id, branch_north.id)
        assert destination.quantity == 25
        assert destination.selling_price_cents == 300

    def test_pending_cannot_complete(self, stock, oil, branch_main, branch_north, admin):
        stock(oil, branch_main, 10)
        transfer = _create(oil, branch_main, branch_north, 5, admin)

        with pytest.raises(InvalidTransitionError):
            transfer_service.advance_transfer(
                transfer_id=transfer.id, target_status=TRANSFER_STATUS_COMPLETED, actor=admin
            )

        assert stock_service.get_or_none(oil.id, branch_north.id) is None

    @pytest.mark.parametrize("ship_first", [False, True])
    def test_cancel_releases_reservation(self, stock, oil, branch_main, branch_north, admin, ship_first):
        stock(oil, branch_main, 10)
        transfer = _create(oil, branch_main, branch_north, 6, admin)
        if ship_first:
            transfer_service.advance_transfer(
                transfer_id=transfer.id, target_status=TRANSFER_STATUS_IN_TRANSIT, actor=admin
            )

        cancelled = transfer_service.advance_transfer(
            transfer_id=transfer.id, target_status=TRANSFER_STATUS_CANCELLED, actor=admin
        )

        assert cancelled.cancelled_by_user_id == admin.user_id
        source = stock_service.require_record(oil.id, branch_main.id)
        assert (source.quantity, source.reserved_quantity) == (10, 0)

    def test_completed_is_terminal(self, stock, oil, branch_main, branch_north, admin):
        stock(oil, branch_main, 10)
        transfer = _create(oil, branch_main, branch_north, 2, admin)
        for status in (TRANSFER_STATUS_IN_TRANSIT, TRANSFER_STATUS_COMPLETED):
            transfer_service.advance_transfer(transfer_id=transfer.id, target_status=status, actor=admin)

        with pytest.raises(InvalidTransitionError):
            transfer_service.advance_transfer(
                transfer_id=transfer.id, target_status=TRANSFER_STATUS_CANCELLED, actor=admin
            )

    def test_unknown_status(self, admin):
        with pytest.raises(ValidationError):
            transfer_service.advance_transfer(transfer_id=1, target_status="lost", actor=admin)


class TestTransferVisibility:

    def test_source_branch_sees_transfer(self, stock, oil, branch_main, branch_north, admin, salesperson):
        stock(oil, branch_main, 10)
        transfer = _create(oil, branch_main, branch_north, 2, admin)

        assert transfer_service.get_transfer(transfer.id, salesperson).id == transfer.id
        rows, total = transfer_service.list_transfers(actor=salesperson)
        assert total == 1

    def test_unrelated_branch_gets_not_found(self, db_session, stock, oil, branch_main, branch_north, admin):
        south = Branch(code="SOUTH", name="South Branch", is_active=True)
        db_session.add(south)
        db_session.commit()
        outsider = Actor.from_user(
            create_user("sam", "sam@stockledger.test", "Password123!", "salesperson", south.id)
        )

        stock(oil, branch_main, 10)
        transfer = _create(oil, branch_main, branch_north, 2, admin)

        with pytest.raises(NotFoundError):
            transfer_service.get_transfer(transfer.id, outsider)
        assert transfer_service.list_transfers(actor=outsider) == ([], 0)


class TestConcurrentTransitions:
    """Two writers racing on the same transfer: exactly one transition lands."""

    def _in_transit(self, world, quantity):
        world.stock(world.main_id, 100)
        transfer = transfer_service.create_transfer(
            product_id=world.product_id,
            from_branch_id=world.main_id,
            to_branch_id=world.north_id,
            quantity=quantity,
            actor=world.admin,
        )
        transfer_service.advance_transfer(
            transfer_id=transfer.id, target_status=TRANSFER_STATUS_IN_TRANSIT, actor=world.admin
        )
        return transfer.id

    def _advance(self, world, transfer_id, status):
        return lambda: transfer_service.advance_transfer(
            transfer_id=transfer_id, target_status=status, actor=world.admin
        )

    def test_double_completion_moves_stock_once(self, monkeypatch, file_world):
        transfer_id = self._in_transit(file_world, 30)
        pause_after_locked_read(monkeypatch, transfer_service)

        results = run_concurrently(
            file_world.app,
            self._advance(file_world, transfer_id, TRANSFER_STATUS_COMPLETED),
            self._advance(file_world, transfer_id, TRANSFER_STATUS_COMPLETED),
        )

        assert results.count("ok") == 1
        assert [type(r) for r in results if r != "ok"] == [InvalidTransitionError]
        source = stock_service.require_record(file_world.product_id, file_world.main_id)
        destination = stock_service.require_record(file_world.product_id, file_world.north_id)
        assert (source.quantity, source.reserved_quantity) == (70, 0)
        assert destination.quantity == 30

    def test_complete_and_cancel_race_has_one_winner(self, monkeypatch, file_world):
        transfer_id = self._in_transit(file_world, 30)
        pause_after_locked_read(monkeypatch, transfer_service)

        results = run_concurrently(
            file_world.app,
            self._advance(file_world, transfer_id, TRANSFER_STATUS_COMPLETED),
            self._advance(file_world, transfer_id, TRANSFER_STATUS_CANCELLED),
        )

        assert results.count("ok") == 1
        transfer = transfer_service.get_transfer(transfer_id, file_world.admin)
        source = stock_service.require_record(file_world.product_id, file_world.main_id)
        if transfer.status == TRANSFER_STATUS_COMPLETED:
            assert (source.quantity, source.reserved_quantity) == (70, 0)
            assert stock_service.require_record(file_world.product_id, file_world.north_id).quantity == 30
        else:
            assert transfer.status == TRANSFER_STATUS_CANCELLED
            assert (source.quantity, source.reserved_quantity) == (100, 0)
            assert stock_service.get_or_none(file_world.product_id, file_world.north_id) is None
