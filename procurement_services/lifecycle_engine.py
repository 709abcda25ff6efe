"""
ProcurementLifecycleEngine -- the public surface of the lifecycle.

Responsibility:
    Wires the collaborators (EntityStore, Clock, EngineConfig,
    NotificationSink) into the lifecycle services and exposes every
    transition and query as one method.  Callers never touch the services
    directly.

Architecture position:
    Services -- the outermost shell.  Presentation layers (web, CLI,
    scheduled jobs) hold one engine per store.

Invariants enforced:
    - Every transition runs through the TransitionRunner: one capability
      check, sorted entity locks, one store transaction, notifications
      published after commit.
    - Retryable failures (ConcurrentModification, EntityLockTimeout,
      CollaboratorUnavailable) are retried ``retry_attempts`` times with
      backoff before reaching the caller.

Failure modes:
    Every error a transition raises is a ProcurementKernelError subclass;
    see ``procurement_kernel.exceptions``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

from procurement_config import get_active_config
from procurement_config.schema import EngineConfig
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.values import ZERO
from procurement_kernel.logging_config import get_logger
from procurement_modules.actors import Actor
from procurement_modules.bons.models import Bon
from procurement_modules.display import DisplayState, derive_display_state
from procurement_modules.inventory.models import InventoryItem, StockMovement
from procurement_modules.notifications.models import Notification
from procurement_modules.orders.models import Order
from procurement_modules.purchases.models import Purchase
from procurement_services.entity_locks import EntityLockManager
from procurement_services.entity_store import STOCK_MOVEMENTS, EntityStore
from procurement_services.inbox_service import InboxService
from procurement_services.notification_service import DispatchReport, NotificationService
from procurement_services.notification_sink import LoggingNotificationSink, NotificationSink
from procurement_services.order_service import LineRequest, OrderService
from procurement_services.pricing_service import PricingService
from procurement_services.purchase_service import PurchaseService
from procurement_services.reconciliation_service import (
    ReconciliationReport,
    ReconciliationService,
)
from procurement_services.repositories import Repositories
from procurement_services.retry import run_with_retry
from procurement_services.sequence_service import SequenceService, sequence_sort_key
from procurement_services.stock_service import StockService, ready_bons_for
from procurement_services.transition_runner import TransitionResult, TransitionRunner

logger = get_logger("services.lifecycle_engine")

T = TypeVar("T")


@dataclass(frozen=True)
class SellableProduct:
    """A product the cashier may sell, priced by its latest ready bon."""

    product_ref: str
    unit: str
    selling_price: Decimal
    quantity_on_hand: Decimal
    bon_id: str


class ProcurementLifecycleEngine:
    """
    Contract:
        - Transition methods return a TransitionResult; the entity is read
          back with the matching ``get_*`` query.
        - ``idempotency_key`` is optional on every transition; when given,
          a repeat with the same payload replays the first result.
        - Queries never write.

    Non-goals:
        - Does NOT authenticate: the caller supplies the Actor.
        - Does NOT schedule notification retries; call
          ``retry_pending_notifications`` from a periodic job.
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        sink: NotificationSink | None = None,
        locks: EntityLockManager | None = None,
        retry_attempts: int = 3,
        retry_backoff: float = 0.05,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._sink = sink or LoggingNotificationSink(self._clock)
        self._locks = locks or EntityLockManager(self._config.lock_timeout_seconds)
        self._retry_attempts = retry_attempts
        self._retry_backoff = retry_backoff

        self._repos = Repositories(store)
        self._sequences = SequenceService(store, self._clock, self._config.id_format)
        self._notifications = NotificationService(
            store, self._clock, self._config, self._sink, self._sequences
        )
        runner = TransitionRunner(
            store,
            self._clock,
            self._config,
            self._locks,
            self._sequences,
            self._notifications,
        )
        self._orders = OrderService(runner, self._repos)
        self._stock = StockService(runner, self._repos)
        self._purchases = PurchaseService(runner, self._repos, self._stock)
        self._pricing = PricingService(runner, self._repos)
        self._inbox = InboxService(runner, self._repos)
        self._reconciliation = ReconciliationService(store, self._clock)

        logger.info(
            "lifecycle_engine_initialized",
            extra={
                "config_id": self._config.config_id,
                "config_version": self._config.version,
                "store": type(store).__name__,
                "sink": type(self._sink).__name__,
                "retry_attempts": retry_attempts,
            },
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _retry(self, func: Callable[[], T]) -> T:
        return run_with_retry(func, attempts=self._retry_attempts, backoff_base=self._retry_backoff)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def submit_order(
        self,
        actor: Actor,
        *,
        title: str,
        department: str,
        lines: Iterable[LineRequest | Mapping[str, Any]],
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        lines = list(lines)
        return self._retry(lambda: self._orders.submit(
            actor, title=title, department=department, lines=lines, idempotency_key=idempotency_key,
        ))

    def revise_order(
        self,
        order_id: str,
        actor: Actor,
        *,
        lines: Iterable[LineRequest | Mapping[str, Any]],
        title: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        lines = list(lines)
        return self._retry(lambda: self._orders.revise(
            order_id, actor, lines=lines, title=title, idempotency_key=idempotency_key,
        ))

    def approve_order(
        self,
        order_id: str,
        actor: Actor,
        *,
        comment: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._orders.approve(
            order_id, actor, comment=comment, idempotency_key=idempotency_key,
        ))

    def reject_order(
        self,
        order_id: str,
        actor: Actor,
        *,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._orders.reject(
            order_id, actor, reason=reason, idempotency_key=idempotency_key,
        ))

    def cancel_order(
        self,
        order_id: str,
        actor: Actor,
        *,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._orders.cancel(
            order_id, actor, reason=reason, idempotency_key=idempotency_key,
        ))

    # ------------------------------------------------------------------
    # Purchases
    # ------------------------------------------------------------------

    def process_order(
        self,
        order_id: str,
        actor: Actor,
        *,
        supplier: str,
        expected_delivery_date: date | str,
        confirmed_prices: Mapping[str, Any],
        notes: str = "",
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._purchases.process(
            order_id,
            actor,
            supplier=supplier,
            expected_delivery_date=expected_delivery_date,
            confirmed_prices=confirmed_prices,
            notes=notes,
            idempotency_key=idempotency_key,
        ))

    def deliver_purchase(
        self,
        purchase_id: str,
        actor: Actor,
        *,
        received_quantities: Mapping[str, Any] | None = None,
        acknowledge_discrepancy: bool = False,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._purchases.deliver(
            purchase_id,
            actor,
            received_quantities=received_quantities,
            acknowledge_discrepancy=acknowledge_discrepancy,
            notes=notes,
            idempotency_key=idempotency_key,
        ))

    def cancel_purchase(
        self,
        purchase_id: str,
        actor: Actor,
        *,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._purchases.cancel(
            purchase_id, actor, reason=reason, idempotency_key=idempotency_key,
        ))

    # ------------------------------------------------------------------
    # Pricing and stock
    # ------------------------------------------------------------------

    def set_selling_price(
        self,
        bon_id: str,
        product_ref: str,
        selling_price: Any,
        actor: Actor,
        *,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._pricing.set_price(
            bon_id, product_ref, selling_price, actor, idempotency_key=idempotency_key,
        ))

    def adjust_stock(
        self,
        product_ref: str,
        delta: Any,
        actor: Actor,
        *,
        reason: str,
        unit: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._stock.adjust(
            product_ref, delta, actor, reason=reason, unit=unit, idempotency_key=idempotency_key,
        ))

    def issue_to_sale(
        self,
        product_ref: str,
        quantity: Any,
        actor: Actor,
        *,
        reference: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._stock.issue(
            product_ref, quantity, actor, reference=reference, idempotency_key=idempotency_key,
        ))

    def set_threshold(
        self,
        product_ref: str,
        threshold: Any,
        actor: Actor,
        *,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._stock.set_threshold(
            product_ref, threshold, actor, idempotency_key=idempotency_key,
        ))

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def mark_notification_read(
        self,
        notification_id: str,
        actor: Actor,
        *,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return self._retry(lambda: self._inbox.mark_read(
            notification_id, actor, idempotency_key=idempotency_key,
        ))

    def list_notifications(self, actor: Actor, *, unread_only: bool = False) -> list[Notification]:
        return self._inbox.list_for(actor, unread_only=unread_only)

    def retry_pending_notifications(self) -> DispatchReport:
        return self._notifications.retry_pending()

    def outbox_status(self, notification_id: str) -> str:
        return self._notifications.outbox_entry(notification_id).status.value

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        return self._repos.orders.get(order_id)

    def list_orders(self, *, status: str | None = None, department: str | None = None) -> list[Order]:
        orders = self._repos.orders.list(
            lambda doc: (status is None or doc["status"] == status)
            and (department is None or doc["department"] == department)
        )
        orders.sort(key=lambda o: (o.created_at, sequence_sort_key(o.id)), reverse=True)
        return orders

    def get_purchase(self, purchase_id: str) -> Purchase:
        return self._repos.purchases.get(purchase_id)

    def list_purchases(self, *, order_id: str | None = None) -> list[Purchase]:
        purchases = self._repos.purchases.list(
            None if order_id is None else (lambda doc: doc["order_id"] == order_id)
        )
        return sorted(purchases, key=lambda p: sequence_sort_key(p.id))

    def get_bon(self, bon_id: str) -> Bon:
        return self._repos.bons.get(bon_id)

    def list_bons(self, *, status: str | None = None) -> list[Bon]:
        bons = self._repos.bons.list(
            None if status is None else (lambda doc: doc["status"] == status)
        )
        return sorted(bons, key=lambda b: sequence_sort_key(b.id))

    def get_inventory_item(self, product_ref: str) -> InventoryItem:
        return self._repos.inventory.get(product_ref)

    def list_inventory(self) -> list[InventoryItem]:
        return self._repos.inventory.list()

    def list_low_stock(self) -> list[InventoryItem]:
        """Items at or below their threshold, out-of-stock ones included."""
        return [item for item in self._repos.inventory.list() if item.is_low_stock]

    def list_stock_movements(self, product_ref: str | None = None) -> list[StockMovement]:
        """Stock ledger entries, oldest first."""
        records = self._store.query(
            STOCK_MOVEMENTS,
            None if product_ref is None else (lambda doc: doc["product_ref"] == product_ref),
        )
        movements = [StockMovement.from_document(r.data) for r in records]
        movements.sort(key=lambda m: (m.date, sequence_sort_key(m.id)))
        return movements

    def is_sellable(self, product_ref: str) -> bool:
        return bool(ready_bons_for(self._repos, product_ref))

    def list_sellable_products(self) -> list[SellableProduct]:
        """Products with stock on hand and a selling price on a ready bon."""
        products = []
        for item in self._repos.inventory.list():
            if item.quantity <= ZERO:
                continue
            bons = ready_bons_for(self._repos, item.product_ref)
            if not bons:
                continue
            priced = bons[0].product(item.product_ref)
            products.append(SellableProduct(
                product_ref=item.product_ref,
                unit=item.unit,
                selling_price=priced.selling_price,
                quantity_on_hand=item.quantity,
                bon_id=bons[0].id,
            ))
        return products

    def display_state(self, entity: Order | Purchase | Bon | InventoryItem) -> DisplayState:
        return derive_display_state(entity)

    def reconcile(self) -> ReconciliationReport:
        return self._reconciliation.run()
