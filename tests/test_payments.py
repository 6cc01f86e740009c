"""
Unit Tests: checkout and VNPay returns

Covers payments.py:
- VNPayReturn - query parsing, amount scaling, pay date, order reference
- process_vnpay_return() - success, gateway failure, unresolvable orders
- start_checkout() - COD and VNPay flows, refusals before any order is created
- resume_vnpay_payment() - only for pending VNPay payments
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from api_client import Err, Ok
from cart import CartLine, CartService, CartState
from exceptions import ApiError, CartError, ErrorKind, PaymentError
from models import Order, OrderStatus, Payment, PaymentMethod, PaymentStatus
from payments import (
    DEFAULT_FAILURE,
    VNPayReturn,
    process_vnpay_return,
    resume_vnpay_payment,
    start_checkout,
)

RETURN_QUERY = {
    "vnp_ResponseCode": "00",
    "vnp_OrderInfo": "Thanh toan don hang:42",
    "vnp_Amount": "6000000",
    "vnp_BankCode": "NCB",
    "vnp_BankTranNo": "VNP14226112",
    "vnp_PayDate": "20260310153045",
    "vnp_TransactionNo": "14226112",
    "vnp_TxnRef": "42",
}


def make_order(order_id=42, method=PaymentMethod.VNPAY, status=PaymentStatus.PENDING, with_payment=True):
    payment = Payment(id=7, order_id=order_id, method=method, status=status, amount=Decimal("60000")) \
        if with_payment else None
    return Order(id=order_id, status=OrderStatus.PENDING_PAYMENT, total_amount=Decimal("60000"),
                 address="1 Book St", payment=payment)


def payments_api(order):
    api = MagicMock()
    api.orders.get = AsyncMock(return_value=Ok(order))
    api.payments.mark_done = AsyncMock(return_value=Ok(order.payment.model_copy(
        update={"status": PaymentStatus.SUCCESS}) if order.payment else None))
    return api


class TestVNPayReturn:

    def test_parses_query(self):
        gateway = VNPayReturn.from_query(RETURN_QUERY)

        assert gateway.succeeded
        assert gateway.order_id == 42
        assert gateway.amount == Decimal("60000")
        assert gateway.bank_code == "NCB"
        assert gateway.pay_date == datetime(2026, 3, 10, 15, 30, 45)
        assert gateway.formatted_pay_date == "2026-03-10 15:30:45"

    def test_bad_values_fall_back(self):
        gateway = VNPayReturn.from_query({"vnp_Amount": "lots", "vnp_PayDate": "yesterday"})

        assert gateway.amount == Decimal("0")
        assert gateway.pay_date is None
        assert gateway.formatted_pay_date == "yesterday"
        assert gateway.order_id is None
        assert not gateway.succeeded

    def test_failure_messages(self):
        assert "cancelled" in VNPayReturn(response_code="24").failure_message
        assert VNPayReturn(response_code="42").failure_message == DEFAULT_FAILURE
        assert VNPayReturn().failure_message == "An error occurred during payment processing."


class TestProcessVNPayReturn:

    @pytest.mark.asyncio
    async def test_success_marks_payment_done(self):
        api = payments_api(make_order())

        outcome = await process_vnpay_return(api, RETURN_QUERY)

        assert outcome.succeeded
        assert outcome.order_id == 42
        assert outcome.payment.status is PaymentStatus.SUCCESS
        assert outcome.amount == Decimal("60000")
        api.orders.get.assert_awaited_once_with(42)
        api.payments.mark_done.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_payment_pending(self):
        api = payments_api(make_order())

        outcome = await process_vnpay_return(api, {**RETURN_QUERY, "vnp_ResponseCode": "51"})

        assert not outcome.succeeded
        assert "balance" in outcome.message
        assert outcome.amount == Decimal("60000")
        api.payments.mark_done.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_order_reference(self):
        api = payments_api(make_order())

        with pytest.raises(PaymentError, match="Invalid order reference"):
            await process_vnpay_return(api, {**RETURN_QUERY, "vnp_OrderInfo": "no reference"})
        api.orders.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_order_without_payment(self):
        api = payments_api(make_order(with_payment=False))

        with pytest.raises(PaymentError, match="Payment record not found"):
            await process_vnpay_return(api, RETURN_QUERY)

    @pytest.mark.asyncio
    async def test_unknown_order_raises_api_error(self):
        api = MagicMock()
        api.orders.get = AsyncMock(return_value=Err(ApiError(ErrorKind.NOT_FOUND, "Order not found", 404)))

        with pytest.raises(ApiError):
            await process_vnpay_return(api, RETURN_QUERY)

    @pytest.mark.asyncio
    async def test_confirmation_failure(self):
        api = payments_api(make_order())
        api.payments.mark_done = AsyncMock(return_value=Err(ApiError(ErrorKind.SERVER, "boom", 500)))

        with pytest.raises(PaymentError) as excinfo:
            await process_vnpay_return(api, RETURN_QUERY)
        assert excinfo.value.order_id == 42
        assert "#42" in excinfo.value.message


class TestStartCheckout:

    def checkout_api(self, sample_api):
        order = Order(id=99, total_amount=Decimal("60.00"), address="1 Book St")
        sample_api.orders.create = AsyncMock(return_value=Ok(order))
        sample_api.payments.create_record = AsyncMock(return_value=Ok(Payment(id=5, order_id=99,
                                                                               amount=Decimal("60.00"))))
        sample_api.payments.create_vnpay_url = AsyncMock(return_value=Ok("https://sandbox.vnpayment.vn/pay?x=1"))
        return sample_api

    @pytest.mark.asyncio
    async def test_cod(self, sample_api):
        api = self.checkout_api(sample_api)
        state = CartState({})
        cart = CartService(api, state, "CUSTOMER")

        result = await start_checkout(api, cart, "  1 Book St ", PaymentMethod.COD)

        assert result.order.id == 99
        assert result.redirect_url is None
        api.orders.create.assert_awaited_once_with("1 Book St")
        api.payments.create_record.assert_awaited_once_with(99, PaymentMethod.COD, Decimal("60.00"))
        api.payments.create_vnpay_url.assert_not_awaited()
        assert not state.loaded

    @pytest.mark.asyncio
    async def test_vnpay_returns_gateway_url(self, sample_api):
        api = self.checkout_api(sample_api)
        cart = CartService(api, CartState({}), "CUSTOMER")

        result = await start_checkout(api, cart, "1 Book St", PaymentMethod.VNPAY)

        assert result.redirect_url.startswith("https://sandbox.vnpayment.vn/")
        api.payments.create_vnpay_url.assert_awaited_once_with(Decimal("60.00"))

    @pytest.mark.asyncio
    async def test_address_required(self, sample_api):
        api = self.checkout_api(sample_api)

        with pytest.raises(PaymentError, match="delivery address"):
            await start_checkout(api, CartService(api, CartState({}), "CUSTOMER"), "   ", PaymentMethod.COD)
        api.orders.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_selected(self, sample_api):
        api = self.checkout_api(sample_api)
        state = CartState({})
        state.replace([CartLine(1, 1, False), CartLine(3, 1, True)])

        with pytest.raises(CartError, match="at least one item"):
            await start_checkout(api, CartService(api, state, "CUSTOMER"), "1 Book St", PaymentMethod.COD)
        api.orders.create.assert_not_awaited()


class TestResumeVNPayPayment:

    @pytest.mark.asyncio
    async def test_pending_vnpay_order(self):
        api = payments_api(make_order())
        api.payments.create_vnpay_url = AsyncMock(return_value=Ok("https://pay.example/42"))

        assert await resume_vnpay_payment(api, 42) == "https://pay.example/42"
        api.payments.create_vnpay_url.assert_awaited_once_with(Decimal("60000"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method, status", [
        (PaymentMethod.COD, PaymentStatus.PENDING),
        (PaymentMethod.VNPAY, PaymentStatus.SUCCESS),
    ])
    async def test_nothing_to_resume(self, method, status):
        api = payments_api(make_order(method=method, status=status))
        api.payments.create_vnpay_url = AsyncMock()

        with pytest.raises(PaymentError, match="does not require payment"):
            await resume_vnpay_payment(api, 42)
        api.payments.create_vnpay_url.assert_not_awaited()
