"""
Checkout and VNPay payments.

Checkout turns the selected cart lines into an order, records how it will be
paid and, for VNPay, hands back the gateway URL to redirect to. The gateway
later sends the shopper back with vnp_* query parameters which are parsed and
confirmed here.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Mapping

from exceptions import CartError, PaymentError
from models import Order, Payment, PaymentMethod

logger = logging.getLogger(__name__)

VNPAY_SUCCESS_CODE = "00"
VNPAY_DATE_FORMAT = "%Y%m%d%H%M%S"

# vnp_OrderInfo looks like "Thanh toan don hang:123"
ORDER_REF = re.compile(r":(\d+)")

VNPAY_FAILURES = {
    "07": "This transaction appears suspicious and has been blocked. Please contact your bank.",
    "09": "Your card is not registered for internet banking. Please enable it first.",
    "10": "Too many failed attempts. Please try again later.",
    "11": "Payment session timed out. Please try again.",
    "12": "Your card has been locked. Please contact your bank.",
    "13": "OTP verification failed. Please try again.",
    "24": "Transaction was cancelled by you.",
    "51": "Insufficient account balance. Please check your account.",
    "65": "Daily transaction limit exceeded. Please try again tomorrow.",
    "75": "Payment bank is currently under maintenance. Please try again later.",
    "79": "Transaction amount exceeds your payment limit.",
    "99": "An error occurred during payment processing.",
}
DEFAULT_FAILURE = "Payment failed. Please try again or use a different payment method."


@dataclass(frozen=True)
class VNPayReturn:
    response_code: str = ""
    order_info: str = ""
    raw_amount: str = ""
    bank_code: str = ""
    bank_tran_no: str = ""
    raw_pay_date: str = ""
    transaction_no: str = ""
    txn_ref: str = ""

    @classmethod
    def from_query(cls, args: Mapping[str, str]) -> "VNPayReturn":
        return cls(
            response_code=args.get("vnp_ResponseCode", ""),
            order_info=args.get("vnp_OrderInfo", ""),
            raw_amount=args.get("vnp_Amount", ""),
            bank_code=args.get("vnp_BankCode", ""),
            bank_tran_no=args.get("vnp_BankTranNo", ""),
            raw_pay_date=args.get("vnp_PayDate", ""),
            transaction_no=args.get("vnp_TransactionNo", ""),
            txn_ref=args.get("vnp_TxnRef", ""),
        )

    @property
    def succeeded(self) -> bool:
        return self.response_code == VNPAY_SUCCESS_CODE

    @property
    def amount(self) -> Decimal:
        """The gateway sends amounts multiplied by 100."""
        try:
            return Decimal(self.raw_amount or "0") / 100
        except ArithmeticError:
            return Decimal("0")

    @property
    def pay_date(self) -> datetime | None:
        try:
            return datetime.strptime(self.raw_pay_date, VNPAY_DATE_FORMAT)
        except ValueError:
            return None

    @property
    def formatted_pay_date(self) -> str:
        pay_date = self.pay_date
        return pay_date.strftime("%Y-%m-%d %H:%M:%S") if pay_date else self.raw_pay_date

    @property
    def order_id(self) -> int | None:
        match = ORDER_REF.search(self.order_info or "")
        return int(match.group(1)) if match else None

    @property
    def failure_message(self) -> str:
        return VNPAY_FAILURES.get(self.response_code or "99", DEFAULT_FAILURE)


@dataclass(frozen=True)
class PaymentOutcome:
    succeeded: bool
    message: str
    order_id: int | None
    gateway: VNPayReturn
    payment: Payment | None = None

    @property
    def amount(self) -> Decimal:
        if self.payment is not None:
            return self.payment.amount
        return self.gateway.amount


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    payment: Payment
    redirect_url: str | None = None


async def process_vnpay_return(api, params: Mapping[str, str]) -> PaymentOutcome:
    """
    Confirm a VNPay return.

    Response code 00 marks the order's payment done. Any other code only reports
    the failure; the payment stays pending so the shopper can retry it.
    Raises PaymentError when the order or its payment cannot be resolved.
    """
    gateway = VNPayReturn.from_query(params)
    order_id = gateway.order_id
    if order_id is None:
        logger.error("VNPay return without an order reference: %r", gateway.order_info)
        raise PaymentError("Invalid order reference. Please check your orders.")

    order = (await api.orders.get(order_id)).unwrap()
    if order.payment is None:
        raise PaymentError("Payment record not found for this order.", order_id)

    if not gateway.succeeded:
        logger.warning("VNPay payment for order %s failed with code %s", order_id, gateway.response_code)
        return PaymentOutcome(False, gateway.failure_message, order_id, gateway)

    result = await api.payments.mark_done(order.payment.id)
    if not result.ok:
        logger.error("Could not mark payment %s of order %s done: %r", order.payment.id, order_id, result.error)
        raise PaymentError(f"Failed to confirm payment. Please contact support with order #{order_id}", order_id)

    logger.info("VNPay payment %s for order %s confirmed", order.payment.id, order_id)
    return PaymentOutcome(True, "Payment completed successfully! Your order is being processed.", order_id,
                          gateway, result.value)


async def start_checkout(api, cart, address: str, method: PaymentMethod) -> CheckoutResult:
    """Place an order for the selected cart lines and start its payment."""
    address = (address or "").strip()
    if not address:
        raise PaymentError("Please enter a delivery address.")

    summary = await cart.summary()
    if not summary.selected_items:
        raise CartError("Please select at least one item to checkout.")

    order = (await api.orders.create(address)).unwrap()
    amount = order.total_amount or summary.total
    payment = (await api.payments.create_record(order.id, method, amount)).unwrap()
    # the server cart changed under us
    cart.forget()
    logger.info("Order %s placed, %s payment %s for %s", order.id, method.value, payment.id, amount)

    if method is PaymentMethod.VNPAY:
        url = (await api.payments.create_vnpay_url(amount)).unwrap()
        return CheckoutResult(order, payment, url)
    return CheckoutResult(order, payment)


async def resume_vnpay_payment(api, order_id: int) -> str:
    """Gateway URL for an order whose VNPay payment is still pending."""
    order = (await api.orders.get(order_id)).unwrap()
    if not order.payment_pending:
        raise PaymentError("This order does not require payment completion", order_id)
    return (await api.payments.create_vnpay_url(order.total_amount)).unwrap()
