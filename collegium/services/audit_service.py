"""
Financial audit logging.

Every payment is written together with exactly one PaymentLogEntry in the
same store transaction; neither record can be updated or deleted afterwards.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from ..core.entities import Payment, PaymentLogEntry, to_decimal
from ..core.enums import EntityType
from ..core.exceptions import InvalidPaymentError, ValidationError
from ..persistence.store import EntityStore
from .concurrency_manager import ConcurrencyManager, LockType, student_key

logger = logging.getLogger(__name__)

UNKNOWN_METHOD = "UNKNOWN"
_INVOICE_METHOD = re.compile(r"<method>\s*([^<]+?)\s*</method>")


def resolve_method(payment: Payment) -> str:
    """Payment method: explicit value, else the invoice's <method> element, else UNKNOWN."""
    if payment.method:
        return payment.method
    if payment.invoice_payload:
        match = _INVOICE_METHOD.search(payment.invoice_payload)
        if match:
            return match.group(1)
    return UNKNOWN_METHOD


@dataclass
class MethodTermTotal:
    """Payment total for one (method, term) group."""
    method: str
    term_id: str
    term_name: str
    total_amount: Decimal
    payments_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'method': self.method,
            'term_id': self.term_id,
            'term_name': self.term_name,
            'total_amount': str(self.total_amount),
            'payments_count': self.payments_count,
        }


class AuditService:
    """Service recording payments and their audit trail."""

    def __init__(self, store: EntityStore, concurrency_manager: ConcurrencyManager,
                 lock_timeout: Optional[float] = None):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._lock_timeout = lock_timeout

    def record_payment(self, student_id: str, term_id: str, amount: Any,
                       payment_date: Union[date, str], method: Optional[str] = None,
                       invoice_payload: Optional[str] = None) -> str:
        """Record a payment and its log entry; return the payment id."""
        try:
            amount = to_decimal(amount, "amount")
        except ValidationError as e:
            raise InvalidPaymentError(e.message, details=e.details) from e
        if amount < 0:
            raise InvalidPaymentError(
                f"Payment amount must be non-negative, got {amount}",
                details={'amount': str(amount)},
            )
        if isinstance(payment_date, str):
            try:
                payment_date = date.fromisoformat(payment_date)
            except ValueError:
                raise ValidationError(f"Invalid payment_date: {payment_date!r}", details={'field': 'payment_date'})

        payment = Payment(
            student_id=student_id,
            term_id=term_id,
            amount=amount,
            payment_date=payment_date,
            method=method,
            invoice_payload=invoice_payload,
        )
        return self._concurrency_manager.execute_with_retry(lambda: self._record_once(payment))

    def _record_once(self, payment: Payment) -> str:
        with self._concurrency_manager.lock(student_key(payment.student_id), LockType.WRITE,
                                            timeout=self._lock_timeout):
            with self._store.transaction() as session:
                missing = [
                    (entity_type, entity_id)
                    for entity_type, entity_id in (
                        (EntityType.STUDENT, payment.student_id),
                        (EntityType.TERM, payment.term_id),
                    )
                    if not session.exists(entity_type, entity_id)
                ]
                if missing:
                    entity_type, entity_id = missing[0]
                    logger.warning(
                        "Payment rejected: unknown %s", entity_type.value,
                        extra={'student_id': payment.student_id, 'term_id': payment.term_id},
                    )
                    raise InvalidPaymentError(
                        f"Payment references unknown {entity_type.value} {entity_id!r}",
                        details={'entity_type': entity_type.value, 'entity_id': entity_id},
                    )

                session.insert(payment)
                session.insert(PaymentLogEntry(
                    payment_id=payment.id,
                    student_id=payment.student_id,
                    term_id=payment.term_id,
                    amount=payment.amount,
                    payment_date=payment.payment_date,
                ))

        logger.info(
            "Payment recorded: %s", payment.amount,
            extra={'student_id': payment.student_id, 'term_id': payment.term_id, 'payment_id': payment.id},
        )
        return payment.id

    def summarize_payments(self, student_id: str) -> List[Payment]:
        """A student's payments, most recent first."""
        with self._store.snapshot() as session:
            session.get(EntityType.STUDENT, student_id)
            payments: List[Payment] = session.query(EntityType.PAYMENT, student_id=student_id)
        payments.sort(key=lambda payment: payment.id)
        payments.sort(key=lambda payment: payment.payment_date, reverse=True)
        return payments

    def payment_log(self, student_id: Optional[str] = None) -> List[PaymentLogEntry]:
        """Audit log entries in append order."""
        if student_id is None:
            return self._store.query(EntityType.PAYMENT_LOG)
        return self._store.query(EntityType.PAYMENT_LOG, student_id=student_id)

    def totals_by_method_and_term(self) -> List[MethodTermTotal]:
        """Payment totals grouped by (method, term), by term name then total descending."""
        with self._store.snapshot() as session:
            payments: List[Payment] = session.query(EntityType.PAYMENT)
            terms = {term.id: term for term in session.query(EntityType.TERM)}

        groups: Dict[tuple, MethodTermTotal] = OrderedDict()
        for payment in payments:
            key = (resolve_method(payment), payment.term_id)
            if key not in groups:
                groups[key] = MethodTermTotal(
                    method=key[0],
                    term_id=payment.term_id,
                    term_name=terms[payment.term_id].name,
                    total_amount=Decimal(0),
                    payments_count=0,
                )
            groups[key].total_amount += payment.amount
            groups[key].payments_count += 1

        totals = sorted(groups.values(), key=lambda total: (total.method, total.term_id))
        totals.sort(key=lambda total: total.total_amount, reverse=True)
        totals.sort(key=lambda total: total.term_name)
        return totals
