"""
Contract API Routes
===================

  GET  /api/v1/contracts/{contract_id}                   -- Contract detail (parties)
  POST /api/v1/contracts/{contract_id}/accept-terms      -- Accept the contract terms
  POST /api/v1/contracts/{contract_id}/pairing/confirm   -- Confirm the pairing code
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter

from src.api.deps import CurrentUser, DBSession, Notifier
from src.api.errors import to_http
from src.api.schemas.contract import ConfirmPairingRequest, ContractResponse, PairingResponse
from src.core.exceptions import AuthorizationError, DoersError
from src.services import contractService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["Contracts"])


@router.get(
    "/{contract_id}",
    response_model=ContractResponse,
    summary="Get a contract",
)
async def get_contract(
    contract_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
) -> ContractResponse:
    try:
        contract = await contractService.get_contract(db, contract_id)
        if not current_user.role_admin and not contract.is_party(current_user.id):
            raise AuthorizationError("You are not a party to this contract")
    except DoersError as exc:
        raise to_http(exc)
    return ContractResponse.model_validate(contract)


@router.post(
    "/{contract_id}/accept-terms",
    response_model=ContractResponse,
    summary="Accept the contract terms",
    description="Once both parties accept, the contract moves to ``accepted``.",
)
async def accept_terms(
    contract_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
) -> ContractResponse:
    try:
        contract = await contractService.accept_terms(db, contract_id, current_user.id)
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.contract_updated(contract, current_user.id)
    return ContractResponse.model_validate(contract)


@router.post(
    "/{contract_id}/pairing/confirm",
    response_model=PairingResponse,
    summary="Confirm the in-person pairing code",
)
async def confirm_pairing(
    contract_id: uuid.UUID,
    body: ConfirmPairingRequest,
    db: DBSession,
    current_user: CurrentUser,
    notifier: Notifier,
) -> PairingResponse:
    try:
        contract = await contractService.confirm_pairing(
            db, contract_id, current_user.id, body.code
        )
    except DoersError as exc:
        raise to_http(exc)
    await db.commit()

    await notifier.contract_updated(contract, current_user.id)
    return PairingResponse(
        contract_id=contract.id,
        client_confirmed=contract.client_confirmed_pairing,
        doer_confirmed=contract.doer_confirmed_pairing,
        both_confirmed=contract.client_confirmed_pairing and contract.doer_confirmed_pairing,
    )
