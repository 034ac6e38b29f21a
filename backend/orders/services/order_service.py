from django.utils import timezone
import logging

from core_backend.exceptions import ConflictError, StateError, ValidationError
from core_backend.money import quantize
from core_backend.unit_of_work import UnitOfWork
from orders.models import Order, OrderItem

logger = logging.getLogger(__name__)


class OrderService:
    """Core service for order lifecycle management - creating, confirming, checking out, cancelling."""

    def __init__(self, item_service, ledger, calculation_service, inventory, customers, settings,
                 unit_of_work=UnitOfWork, clock=timezone.now):
        self.item_service = item_service
        self.ledger = ledger
        self.calculation_service = calculation_service
        self.inventory = inventory
        self.customers = customers
        self.settings = settings
        self.unit_of_work = unit_of_work
        self.clock = clock

    def create_order(self, items, order_type=Order.OrderType.DINE_IN, table_id=None, notes="",
                     customer_id=None) -> Order:
        """
        Opens a new pending order with at least one line. Dine-in orders need
        a free table; takeaway orders take none.
        """
        if not items:
            raise ValidationError("Đơn hàng phải có ít nhất một món")

        if order_type == Order.OrderType.DINE_IN and table_id is None:
            raise ValidationError("Vui lòng chọn bàn cho đơn hàng tại chỗ")
        if order_type == Order.OrderType.TAKEAWAY and table_id is not None:
            raise ValidationError("Đơn hàng mang về không được chọn bàn")

        with self.unit_of_work() as uow:
            table = None
            if table_id is not None:
                table = uow.orders.get_table(table_id)
                if uow.orders.active_order_for_table(table.id) is not None:
                    raise ConflictError("Bàn này đã có khách", details={"table_id": table.id})

            customer = self.customers.get_customer(customer_id) if customer_id is not None else None

            order = uow.orders.create(
                code_prefix=self.settings.order_code_prefix,
                table=table,
                order_type=order_type,
                customer=customer,
                notes=notes or "",
            )
            for spec in items:
                self.item_service.create_line(uow, order, spec)

            self.calculation_service.recalculate_order_totals(order)
            logger.info(
                f"Order {order.order_code} created ({order_type}, table={table_id}, "
                f"customer={customer_id}) total {order.total_amount}"
            )
            return order

    def update_order(self, order_id, changes: dict) -> Order:
        """
        Updates an open order's notes or customer. ``changes`` holds only the
        fields to change; a ``customer_id`` of None detaches the customer.
        Tables change through the table operations.
        """
        if not changes:
            raise ValidationError("Vui lòng nhập thông tin cần cập nhật")

        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.is_terminal:
                raise StateError("Không thể cập nhật đơn hàng đã hoàn thành hoặc đã hủy")

            update_fields = []
            if "customer_id" in changes and changes["customer_id"] != order.customer_id:
                if order.applied_promotion_id is not None:
                    raise ConflictError("Vui lòng hủy khuyến mãi trước khi đổi khách hàng")
                customer_id = changes["customer_id"]
                order.customer = self.customers.get_customer(customer_id) if customer_id is not None else None
                update_fields.append("customer")
            if "notes" in changes:
                order.notes = changes["notes"] or ""
                update_fields.append("notes")

            if update_fields:
                order.save(update_fields=update_fields + ["updated_at"])
                logger.info(f"Order {order.order_code} updated: {', '.join(update_fields)}")
            return order

    def confirm_order(self, order_id) -> Order:
        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.status != Order.OrderStatus.PENDING:
                raise StateError("Chỉ có thể xác nhận đơn hàng đang chờ")
            order.status = Order.OrderStatus.CONFIRMED
            order.save(update_fields=["status", "updated_at"])
            logger.info(f"Order {order.order_code} confirmed")
            return order

    def checkout(self, order_id, payment_method, paid_amount, promotion_id=None, selected_gifts=None) -> Order:
        """
        Finalizes an order.
        - Applies the requested promotion through the ledger (kept if already applied).
        - Deducts inventory for every active line.
        - Records payment; paying less than the total leaves the order partially paid.

        Any failure (ineligible promotion, insufficient stock) rolls back everything.
        """
        currency = self.settings.currency
        paid_amount = quantize(currency, paid_amount)
        if paid_amount < 0:
            raise ValidationError("Số tiền thanh toán không được âm")
        if payment_method not in Order.PaymentMethod.values:
            raise ValidationError("Phương thức thanh toán không hợp lệ")

        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.is_terminal:
                raise StateError("Đơn hàng đã hoàn thành hoặc đã hủy")

            active_items = uow.orders.active_items(order)
            if not active_items:
                raise StateError("Đơn hàng không có món nào để thanh toán")
            if any(item.status == OrderItem.ItemStatus.PENDING for item in active_items):
                raise StateError("Đơn hàng còn món chưa gửi bếp. Vui lòng gửi bếp trước khi thanh toán")

            if promotion_id is not None and order.applied_promotion_id != promotion_id:
                self.ledger.apply_to_locked_order(
                    uow, promotion_id, order, selected_gifts, gift_status=OrderItem.ItemStatus.READY
                )
                active_items = uow.orders.active_items(order)
            else:
                self.calculation_service.recalculate_order_totals(order)

            if paid_amount < order.total_amount and not self.settings.allow_partial_payment:
                raise ValidationError(
                    "Số tiền thanh toán không đủ",
                    details={"total_amount": str(order.total_amount), "paid_amount": str(paid_amount)},
                )

            self.inventory.process_order_completion(order, active_items)

            order.payment_method = payment_method
            order.paid_amount = paid_amount
            order.change_amount = self.calculation_service.calculate_change(order, paid_amount)
            order.payment_status = (
                Order.PaymentStatus.PAID if paid_amount >= order.total_amount else Order.PaymentStatus.PARTIAL
            )
            order.status = Order.OrderStatus.COMPLETED
            order.completed_at = self.clock()
            order.save(
                update_fields=[
                    "payment_method",
                    "paid_amount",
                    "change_amount",
                    "payment_status",
                    "status",
                    "completed_at",
                    "updated_at",
                ]
            )
            logger.info(
                f"Order {order.order_code} checked out: total {order.total_amount}, paid {paid_amount} "
                f"({payment_method}, {order.payment_status})"
            )
            return order

    def cancel_order(self, order_id, reason) -> Order:
        """
        Cancels an open order. Cancelling an already cancelled order is a
        no-op; completed orders cannot be cancelled. Stock is not touched.
        """
        if not reason or not reason.strip():
            raise ValidationError("Vui lòng nhập lý do hủy đơn hàng")
        reason = reason.strip()

        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.status == Order.OrderStatus.COMPLETED:
                raise StateError("Không thể hủy đơn hàng đã hoàn thành")
            if order.status == Order.OrderStatus.CANCELLED:
                logger.debug(f"Order {order.order_code} already cancelled")
                return order

            self.ledger.release(uow, order)

            now = self.clock()
            order.items.exclude(status=OrderItem.ItemStatus.CANCELLED).update(
                status=OrderItem.ItemStatus.CANCELLED, cancel_reason=reason, updated_at=now
            )
            order.status = Order.OrderStatus.CANCELLED
            order.cancel_reason = reason
            order.cancelled_at = now
            order.save(update_fields=["status", "cancel_reason", "cancelled_at", "updated_at"])
            self.calculation_service.recalculate_order_totals(order)

            logger.info(f"Order {order.order_code} cancelled: {reason}")
            return order

    # --- Reads ---

    def get_order(self, order_id) -> Order:
        with self.unit_of_work() as uow:
            return uow.orders.get(order_id)
