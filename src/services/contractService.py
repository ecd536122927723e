"""
Contract Service
================

Pricing and handshake helpers for contracts.

- Commission and total are always derived from the contract price through
  ``compute_pricing``; nothing else writes those columns.
- A 6-digit pairing code is issued when the contract is created and both
  parties confirm it in person before work starts.
- Either party accepts the terms independently; the contract becomes
  ``accepted`` once both have.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    AuthorizationError,
    ContractFunded,
    InvalidOperation,
    NotFoundError,
    ValidationError,
)
from src.models import Contract, ContractStatus, Payment, PaymentStatus
from src.models.base import as_utc, utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Normalise an amount to two decimal places."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_pricing(
    amount: Decimal,
    rate: Optional[Decimal] = None,
) -> tuple[Decimal, Decimal]:
    """Return ``(commission, total_price)`` for a contract price.

    >>> compute_pricing(Decimal("8000"), Decimal("0.10"))
    (Decimal('800.00'), Decimal('8800.00'))
    """
    if rate is None:
        rate = settings.platform_commission_rate
    price = to_money(amount)
    commission = to_money(price * rate)
    return commission, price + commission


def percentage_of(amount: Decimal, total: Decimal) -> Decimal:
    if not total:
        return Decimal("0.00")
    return to_money(Decimal(amount) / Decimal(total) * 100)


def generate_pairing_code(contract: Contract, now: Optional[datetime] = None) -> str:
    """Issue a fresh 6-digit pairing code valid for ``pairing_code_ttl_hours``."""
    now = now or utcnow()
    code = f"{secrets.randbelow(900_000) + 100_000:06d}"
    contract.pairing_code = code
    contract.pairing_generated_at = now
    contract.pairing_expiry = now + timedelta(hours=settings.pairing_code_ttl_hours)
    contract.client_confirmed_pairing = False
    contract.doer_confirmed_pairing = False
    return code


def reprice_contract(
    contract: Contract,
    new_amount: Decimal,
    job_price: Decimal,
    modified_by: uuid.UUID,
    reason: str,
    now: Optional[datetime] = None,
) -> None:
    """Move a contract to a new allocated amount, recording the change."""
    new_amount = to_money(new_amount)
    old_amount = to_money(contract.price)
    if contract.original_price is None:
        contract.original_price = old_amount

    entry = {
        "previous_price": str(old_amount),
        "new_price": str(new_amount),
        "modified_by": str(modified_by),
        "reason": reason,
        "modified_at": (now or utcnow()).isoformat(),
    }
    contract.price_modification_history = [
        *(contract.price_modification_history or []),
        entry,
    ]

    commission, total = compute_pricing(new_amount)
    contract.price = new_amount
    contract.allocated_amount = new_amount
    contract.percentage_of_budget = percentage_of(new_amount, job_price)
    contract.commission = commission
    contract.total_price = total

    logger.info(
        "Contract repriced: contract=%s, %s -> %s, by=%s",
        contract.id,
        old_amount,
        new_amount,
        modified_by,
    )


async def get_contract(
    db: AsyncSession,
    contract_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Contract:
    stmt = select(Contract).where(Contract.id == contract_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    contract = result.scalar_one_or_none()
    if contract is None:
        raise NotFoundError(f"Contract {contract_id} not found")
    return contract


async def get_active_contract_for_worker(
    db: AsyncSession,
    job_id: uuid.UUID,
    worker_id: uuid.UUID,
) -> Optional[Contract]:
    result = await db.execute(
        select(Contract)
        .where(
            Contract.job_id == job_id,
            Contract.doer_id == worker_id,
            Contract.status.notin_(
                [ContractStatus.CANCELLED.value, ContractStatus.COMPLETED.value]
            ),
        )
        .with_for_update()
    )
    return result.scalars().first()


# A hold in any of these states was authorised (or may still be) for the
# contract's current total.
_OPEN_ESCROW_STATUSES = (
    PaymentStatus.PENDING.value,
    PaymentStatus.HELD_ESCROW.value,
    PaymentStatus.AWAITING_CONFIRMATION.value,
    PaymentStatus.DISPUTED.value,
)


async def ensure_unfunded(db: AsyncSession, contract: Contract, action: str) -> None:
    """Refuse ``action`` on a contract whose escrow payment is still open.

    Raises:
        ContractFunded: The contract has an escrow hold that was not
            released or refunded.
    """
    result = await db.execute(
        select(Payment.id)
        .where(
            Payment.contract_id == contract.id,
            Payment.is_escrow.is_(True),
            Payment.status.in_(_OPEN_ESCROW_STATUSES),
        )
        .limit(1)
    )
    payment_id = result.scalar_one_or_none()
    if payment_id is not None:
        logger.warning(
            "Refused to %s funded contract: contract=%s, payment=%s",
            action,
            contract.id,
            payment_id,
        )
        raise ContractFunded(
            f"Contract {contract.id} has an escrow payment; refund it before you {action} it"
        )


async def confirm_pairing(
    db: AsyncSession,
    contract_id: uuid.UUID,
    user_id: uuid.UUID,
    code: str,
    now: Optional[datetime] = None,
) -> Contract:
    """Record one party's confirmation of the in-person pairing code.

    Returns the contract; both parties have confirmed when
    ``client_confirmed_pairing and doer_confirmed_pairing``.

    Raises:
        NotFoundError: Unknown contract.
        AuthorizationError: ``user_id`` is not a party to the contract.
        ValidationError: Wrong or expired code.
    """
    now = now or utcnow()
    contract = await get_contract(db, contract_id, for_update=True)
    if not contract.is_party(user_id):
        raise AuthorizationError("Only contract parties can confirm the pairing code")
    if not contract.is_active():
        raise InvalidOperation(f"Contract is {contract.status}")

    if not contract.pairing_code or not secrets.compare_digest(
        contract.pairing_code, code
    ):
        raise ValidationError("Invalid pairing code", code="invalid_pairing_code")
    expiry = as_utc(contract.pairing_expiry)
    if expiry is not None and expiry < now:
        raise ValidationError("Pairing code has expired", code="pairing_code_expired")

    if user_id == contract.client_id:
        contract.client_confirmed_pairing = True
    else:
        contract.doer_confirmed_pairing = True
    await db.flush()

    logger.info(
        "Pairing confirmed: contract=%s, user=%s, both=%s",
        contract.id,
        user_id,
        contract.client_confirmed_pairing and contract.doer_confirmed_pairing,
    )
    return contract


async def accept_terms(
    db: AsyncSession,
    contract_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Contract:
    """Record one party's acceptance of the contract terms."""
    contract = await get_contract(db, contract_id, for_update=True)
    if not contract.is_party(user_id):
        raise AuthorizationError("Only contract parties can accept its terms")
    if contract.status != ContractStatus.PENDING:
        raise InvalidOperation(
            f"Terms can only be accepted on a pending contract (current: {contract.status})"
        )

    if user_id == contract.client_id:
        contract.terms_accepted_by_client = True
    if user_id == contract.doer_id:
        contract.terms_accepted_by_doer = True

    if contract.terms_accepted_by_client and contract.terms_accepted_by_doer:
        contract.terms_accepted = True
        contract.status = ContractStatus.ACCEPTED.value
    await db.flush()

    logger.info(
        "Contract terms accepted: contract=%s, user=%s, status=%s",
        contract.id,
        user_id,
        contract.status,
    )
    return contract
