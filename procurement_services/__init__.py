"""
procurement_services -- Package init and public API.

Responsibility:
    Stateful services that drive the procurement lifecycle over the
    EntityStore: the transition runner, the lifecycle services, the
    notification outbox, and the ProcurementLifecycleEngine facade that
    wires them together.  This is the only layer that touches the store,
    the notification sink, or wall-clock time.

Architecture position:
    Services -- imperative shell over procurement_modules + procurement_kernel.

    Dependency direction:
        procurement_services/ -> procurement_modules/  (allowed)
        procurement_services/ -> procurement_kernel/   (allowed)
        procurement_modules/  -> procurement_services/ (FORBIDDEN)
        procurement_kernel/   -> procurement_services/ (FORBIDDEN)

Audit relevance:
    This package is the canonical import surface for external consumers.
"""

from procurement_kernel.logging_config import get_logger

logger = get_logger("services")

from procurement_services.entity_locks import EntityLockManager
from procurement_services.entity_store import EntityStore, Record
from procurement_services.lifecycle_engine import ProcurementLifecycleEngine, SellableProduct
from procurement_services.notification_service import DispatchReport
from procurement_services.notification_sink import Ack, LoggingNotificationSink, NotificationSink
from procurement_services.order_service import LineRequest
from procurement_services.reconciliation_service import ReconciliationReport
from procurement_services.retry import run_with_retry
from procurement_services.sql_store import SqlEntityStore
from procurement_services.transition_runner import TransitionResult

__all__ = [
    "Ack",
    "DispatchReport",
    "EntityLockManager",
    "EntityStore",
    "LineRequest",
    "LoggingNotificationSink",
    "NotificationSink",
    "ProcurementLifecycleEngine",
    "ReconciliationReport",
    "Record",
    "SellableProduct",
    "SqlEntityStore",
    "TransitionResult",
    "run_with_retry",
]
