# Overview: Pytest coverage for the service (repair) order workflow.

"""
Service order workflow tests.

Verifies:
- Totals: parts + labor + other charges, recomputed on every edit
- Assigning a mechanic schedules the job; mechanics only touch their own jobs
- Parts are checked but not reserved; completion deducts and can still
  fail with InsufficientStockError, leaving the job in progress
- A paid completion books exactly one service Transaction
"""

import re

import pytest

from stockledger.errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidOperationError,
    InvalidTransitionError,
    ValidationError,
)
from stockledger.models import ServiceOrder, StockMovement
from stockledger.models.ledger import TRANSACTION_TYPE_SERVICE
from stockledger.models.sales import PAYMENT_STATUS_PARTIAL
from stockledger.models.service_orders import (
    SERVICE_STATUS_CANCELLED,
    SERVICE_STATUS_COMPLETED,
    SERVICE_STATUS_IN_PROGRESS,
    SERVICE_STATUS_PENDING,
    SERVICE_STATUS_SCHEDULED,
)
from stockledger.models.stock import MOVEMENT_SERVICE_USE, REFERENCE_SERVICE_ORDER
from stockledger.services import ledger_service, sales_service, service_order_service, stock_service
from stockledger.services.directory_service import Actor
from stockledger.services.sales_service import CustomerInput, LineInput
from stockledger.services.service_order_service import VehicleInput

from conftest import pause_after_locked_read, run_concurrently


CUSTOMER = CustomerInput(name="Jose Reyes", phone="09181234567")


def _job(branch, actor, parts=(), **kwargs):
    kwargs.setdefault("description", "Brake inspection and oil change")
    customer = kwargs.pop("customer", CUSTOMER)
    return service_order_service.create_service_order(
        branch_id=branch.id,
        customer=customer,
        actor=actor,
        parts=[LineInput(product_id=p.id, quantity=q, unit_price_cents=price) for p, q, price in parts],
        **kwargs,
    )


def _advance(order, status, actor):
    return service_order_service.advance_status(order_id=order.id, new_status=status, actor=actor)


class TestCreateServiceOrder:

    def test_totals(self, stock, oil, branch_main, salesperson):
        stock(oil, branch_main, 10)

        order = _job(branch_main, salesperson, [(oil, 2, 150)], labor_cost_cents=500)

        assert order.total_parts_cents == 300
        assert order.total_amount_cents == 800
        assert order.status == SERVICE_STATUS_PENDING
        assert re.fullmatch(r"JOB-\d{4}-000001", order.job_number)

    def test_labor_change_recomputes_total(self, stock, oil, branch_main, salesperson):
        stock(oil, branch_main, 10)
        order = _job(branch_main, salesperson, [(oil, 2, 150)], labor_cost_cents=500)

        order = service_order_service.update_charges(order_id=order.id, actor=salesperson, labor_cost_cents=800)

        assert order.total_parts_cents == 300
        assert order.total_amount_cents == 1100

    def test_part_price_defaults_to_branch_price(self, stock, oil, branch_main, salesperson):
        stock(oil, branch_main, 10, selling_price_cents=275)
        order = _job(branch_main, salesperson, [(oil, 1, None)])
        assert order.parts[0].unit_price_cents == 275

    def test_parts_are_not_reserved(self, stock, oil, branch_main, salesperson):
        stock(oil, branch_main, 10)
        _job(branch_main, salesperson, [(oil, 4, 100)])
        assert stock_service.require_record(oil.id, branch_main.id).reserved_quantity == 0

    def test_parts_checked_against_availability(self, db_session, stock, oil, branch_main, salesperson):
        stock(oil, branch_main, 3)
        with pytest.raises(InsufficientStockError):
            _job(branch_main, salesperson, [(oil, 4, 100)])
        assert db_session.query(ServiceOrder).count() == 0

    def test_assigning_mechanic_schedules(self, branch_main, salesperson, mechanic_user):
        order = _job(branch_main, salesperson, assigned_to=mechanic_user.id)
        assert order.status == SERVICE_STATUS_SCHEDULED
        assert order.scheduled_at is not None

    def test_customer_phone_and_description_required(self, branch_main, salesperson):
        with pytest.raises(ValidationError) as exc:
            _job(branch_main, salesperson, customer=CustomerInput(name="Jose"), description="  ")
        assert {e["field"] for e in exc.value.errors} == {"customer.phone", "description"}

    def test_vehicle_year_validated(self, branch_main, salesperson):
        with pytest.raises(ValidationError):
            _job(branch_main, salesperson, vehicle=VehicleInput(make="Toyota", year=1850))

    def test_assignee_must_be_mechanic(self, branch_main, salesperson, sales_user):
        with pytest.raises(ValidationError):
            _job(branch_main, salesperson, assigned_to=sales_user.id)


class TestServiceLifecycle:

    def test_assign_moves_pending_to_scheduled(self, branch_main, salesperson, mechanic_user):
        order = _job(branch_main, salesperson)

        order = service_order_service.assign_mechanic(
            order_id=order.id, mechanic_id=mechanic_user.id, actor=salesperson
        )

        assert order.status == SERVICE_STATUS_SCHEDULED
        assert order.assigned_to_user_id == mechanic_user.id

    def test_paid_completion_deducts_and_books_transaction(
        self, db_session, stock, oil, branch_main, salesperson, mechanic, mechanic_user
    ):
        stock(oil, branch_main, 10)
        order = _job(
            branch_main, salesperson, [(oil, 2, 150)],
            labor_cost_cents=500, assigned_to=mechanic_user.id,
            payment_method="cash", amount_paid_cents=800,
        )

        _advance(order, SERVICE_STATUS_IN_PROGRESS, mechanic)
        done = _advance(order, SERVICE_STATUS_COMPLETED, mechanic)

        assert done.completed_at is not None
        assert stock_service.require_record(oil.id, branch_main.id).quantity == 8
        movement = db_session.query(StockMovement).filter_by(movement_type=MOVEMENT_SERVICE_USE).one()
        assert movement.reference_id == order.id

        txns = ledger_service.transactions_for_reference(REFERENCE_SERVICE_ORDER, order.id)
        assert len(txns) == 1
        assert txns[0].type == TRANSACTION_TYPE_SERVICE
        assert txns[0].amount_cents == 800

    def test_completion_race_fails_and_keeps_job_open(
        self, stock, oil, branch_main, admin, salesperson, mechanic_user
    ):
        """
        Two jobs pass the parts check; the second cannot be covered at
        completion once a sale has reserved part of the remainder.
        """
        stock(oil, branch_main, 10)
        first = _job(branch_main, salesperson, [(oil, 4, 100)], assigned_to=mechanic_user.id)
        second = _job(branch_main, salesperson, [(oil, 4, 100)], assigned_to=mechanic_user.id)
        sale = sales_service.create_order(
            branch_id=branch_main.id,
            customer=CUSTOMER,
            items=[LineInput(product_id=oil.id, quantity=5)],
            payment_method="cash",
            actor=salesperson,
        )

        for order in (first, second):
            _advance(order, SERVICE_STATUS_IN_PROGRESS, admin)
        _advance(first, SERVICE_STATUS_COMPLETED, admin)

        record = stock_service.require_record(oil.id, branch_main.id)
        assert (record.quantity, record.reserved_quantity) == (6, 5)

        with pytest.raises(InsufficientStockError):
            _advance(second, SERVICE_STATUS_COMPLETED, admin)

        assert service_order_service.get_service_order(second.id, admin).status == SERVICE_STATUS_IN_PROGRESS
        record = stock_service.require_record(oil.id, branch_main.id)
        assert (record.quantity, record.reserved_quantity) == (6, 5)
        assert sales_service.get_order(sale.id, admin).status == "pending"

    def test_mechanic_limited_to_own_jobs(
        self, branch_main, salesperson, mechanic_user, other_mechanic_user
    ):
        order = _job(branch_main, salesperson, assigned_to=mechanic_user.id)
        other = Actor.from_user(other_mechanic_user)

        with pytest.raises(ForbiddenError):
            _advance(order, SERVICE_STATUS_IN_PROGRESS, other)
        with pytest.raises(ForbiddenError):
            service_order_service.get_service_order(order.id, other)

    def test_skipping_states_rejected(self, branch_main, salesperson):
        order = _job(branch_main, salesperson)
        with pytest.raises(InvalidTransitionError):
            _advance(order, SERVICE_STATUS_IN_PROGRESS, salesperson)

    def test_terminal_job_is_frozen(self, stock, oil, branch_main, admin, mechanic_user):
        stock(oil, branch_main, 10)
        order = _job(branch_main, admin, assigned_to=mechanic_user.id)
        _advance(order, SERVICE_STATUS_CANCELLED, admin)

        with pytest.raises(InvalidOperationError):
            service_order_service.update_parts(
                order_id=order.id, parts=[LineInput(product_id=oil.id, quantity=1)], actor=admin
            )
        with pytest.raises(InvalidOperationError):
            service_order_service.update_charges(order_id=order.id, actor=admin, labor_cost_cents=1)
        with pytest.raises(InvalidOperationError):
            service_order_service.update_payment(order_id=order.id, actor=admin, amount_paid_cents=1)

    def test_cancel_through_delete(self, branch_main, admin, mechanic_user, mechanic):
        order = _job(branch_main, admin, assigned_to=mechanic_user.id)
        _advance(order, SERVICE_STATUS_IN_PROGRESS, mechanic)
        _advance(order, SERVICE_STATUS_COMPLETED, mechanic)

        with pytest.raises(InvalidOperationError):
            service_order_service.cancel_service_order(order_id=order.id, actor=admin)

        pending = _job(branch_main, admin)
        cancelled = service_order_service.cancel_service_order(order_id=pending.id, actor=admin)
        assert cancelled.status == SERVICE_STATUS_CANCELLED
        with pytest.raises(InvalidTransitionError):
            service_order_service.cancel_service_order(order_id=pending.id, actor=admin)

    def test_mechanic_cannot_override_part_price(
        self, stock, oil, branch_main, salesperson, mechanic, mechanic_user
    ):
        stock(oil, branch_main, 10, selling_price_cents=275)
        order = _job(branch_main, salesperson, assigned_to=mechanic_user.id)

        with pytest.raises(ForbiddenError):
            service_order_service.update_parts(
                order_id=order.id,
                parts=[LineInput(product_id=oil.id, quantity=1, unit_price_cents=1)],
                actor=mechanic,
            )

        order = service_order_service.update_parts(
            order_id=order.id, parts=[LineInput(product_id=oil.id, quantity=1)], actor=mechanic
        )
        assert order.parts[0].unit_price_cents == 275

    def test_paid_at_cleared_when_charges_grow(self, branch_main, salesperson):
        order = _job(
            branch_main, salesperson, labor_cost_cents=500, payment_method="cash", amount_paid_cents=500
        )
        assert order.paid_at is not None

        order = service_order_service.update_charges(order_id=order.id, actor=salesperson, labor_cost_cents=900)

        assert order.payment_status == PAYMENT_STATUS_PARTIAL
        assert order.paid_at is None

    def test_replacing_parts(self, stock, oil, brake_pad, branch_main, salesperson):
        stock(oil, branch_main, 10)
        stock(brake_pad, branch_main, 10)
        order = _job(branch_main, salesperson, [(oil, 2, 150)], labor_cost_cents=500)

        order = service_order_service.update_parts(
            order_id=order.id,
            parts=[LineInput(product_id=brake_pad.id, quantity=1, unit_price_cents=1500)],
            actor=salesperson,
        )

        assert [p.product_id for p in order.parts] == [brake_pad.id]
        assert order.total_amount_cents == 2000


class TestServiceQueries:

    def test_mechanic_sees_only_assigned_jobs(
        self, branch_main, salesperson, mechanic, mechanic_user, other_mechanic_user
    ):
        mine = _job(branch_main, salesperson, assigned_to=mechanic_user.id)
        _job(branch_main, salesperson, assigned_to=other_mechanic_user.id)
        _job(branch_main, salesperson)

        rows, total = service_order_service.list_service_orders(actor=mechanic)
        assert total == 1
        assert rows[0].id == mine.id

        assert [o.id for o in service_order_service.my_jobs(mechanic)] == [mine.id]

    def test_my_jobs_hides_finished_work(self, branch_main, admin, mechanic, mechanic_user):
        order = _job(branch_main, admin, assigned_to=mechanic_user.id)
        _advance(order, SERVICE_STATUS_CANCELLED, admin)

        assert service_order_service.my_jobs(mechanic) == []
        assert len(service_order_service.my_jobs(mechanic, status=SERVICE_STATUS_CANCELLED)) == 1

    def test_salesperson_list_pinned_to_branch(self, branch_north, salesperson):
        with pytest.raises(ForbiddenError):
            service_order_service.list_service_orders(actor=salesperson, branch_id=branch_north.id)

    def test_invoice(self, branch_main, salesperson):
        order = _job(branch_main, salesperson, labor_cost_cents=1200)
        invoice = service_order_service.service_invoice(order.id, salesperson)
        assert invoice["invoice_number"] == order.job_number
        assert invoice["branch"]["code"] == "MAIN"
        assert invoice["order"]["total_amount_cents"] == 1200


class TestConcurrentCompletion:

    def test_double_completion_uses_parts_once(self, monkeypatch, file_world):
        file_world.stock(file_world.main_id, 10)
        order = service_order_service.create_service_order(
            branch_id=file_world.main_id,
            customer=CUSTOMER,
            description="Oil change",
            parts=[LineInput(product_id=file_world.product_id, quantity=2, unit_price_cents=150)],
            actor=file_world.admin,
        )
        order_id = order.id
        for status in (SERVICE_STATUS_SCHEDULED, SERVICE_STATUS_IN_PROGRESS):
            service_order_service.advance_status(order_id=order_id, new_status=status, actor=file_world.admin)
        pause_after_locked_read(monkeypatch, service_order_service)

        def complete():
            service_order_service.advance_status(
                order_id=order_id, new_status=SERVICE_STATUS_COMPLETED, actor=file_world.admin
            )

        results = run_concurrently(file_world.app, complete, complete)

        assert results.count("ok") == 1
        assert [type(r) for r in results if r != "ok"] == [InvalidTransitionError]
        assert stock_service.require_record(file_world.product_id, file_world.main_id).quantity == 8
