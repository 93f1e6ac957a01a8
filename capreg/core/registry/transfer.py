from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from capreg.core.addressing import Address
from capreg.core.registry.errors import HandleConsumed, InvalidCapability, InvalidTransition
from capreg.core.registry.records import CustodyState
from capreg.core.registry.vault import DelegatedSigner
from capreg.core.runtime.events import RecordTransferred
from capreg.core.security.capabilities import (
    CapabilityKind,
    TransferTicket,
    mint_transfer_ticket,
)
from capreg.core.security.grants import check_grant
from capreg.core.security.identity import Principal
from capreg.core.security.signing import (
    load_public_key_pem,
    signing_metadata,
    verify_detached_ed25519,
)
from capreg.core.storage.base import StoreTransaction

log = logging.getLogger("capreg.transfer")

_TRANSFER_RECEIPT_SCHEMA = {"name": "capreg.transfer_receipt", "version": "1.0"}


def issue_ticket(txn: StoreTransaction, target: Address) -> TransferTicket:
    """Mint a single-use transfer ticket for target and record its grant."""

    ticket = mint_transfer_ticket(target)
    txn.grant(target, CapabilityKind.TRANSFER.value, ticket.digest)
    return ticket


def transfer(
    txn: StoreTransaction,
    signer: DelegatedSigner,
    ticket: TransferTicket,
    recipient: Principal,
) -> RecordTransferred:
    """Hand a record from the proxy identity to recipient.

    State machine: HELD_BY_PROXY -> OWNED_BY_PRINCIPAL, exactly once.

    The ticket is consumed before anything else is checked, so a failed
    transfer still burns it; the enclosing transaction rolls back the store.

    Raises
    - HandleConsumed: ticket already used, or its grant is already gone.
    - InvalidTransition: the record is not held by this proxy identity.
    - InvalidCapability: the ticket does not match the stored grant.
    """

    handle = ticket.consume()
    target = handle.target

    if txn.grant_digest(target, CapabilityKind.TRANSFER.value) is None:
        raise HandleConsumed(f"transfer grant at {target} already consumed")
    check_grant(txn, handle, CapabilityKind.TRANSFER, target)

    try:
        entry = txn.load_at(target)
    except KeyError as e:
        raise InvalidCapability(f"transfer ticket targets empty address {target}") from e

    custody = entry.payload.get("custody")
    if custody != CustodyState.HELD_BY_PROXY.value or entry.owner != signer.signer_id:
        raise InvalidTransition(f"record at {target} is not held by the proxy identity")

    receipt = build_transfer_receipt(
        signer,
        record_address=target,
        namespace=str(entry.payload.get("namespace", "")),
        to_owner=recipient.principal_id,
    )

    payload = dict(entry.payload)
    payload["custody"] = CustodyState.OWNED_BY_PRINCIPAL.value
    payload["transfer_receipt"] = receipt

    txn.mutate_at(entry.with_owner(recipient.principal_id, payload=payload))
    txn.revoke(target, CapabilityKind.TRANSFER.value)

    log.debug(
        "record_transferred",
        extra={"record_address": target.value, "to_owner": recipient.principal_id},
    )

    return RecordTransferred(
        record_address=target.value,
        from_owner=signer.signer_id,
        to_owner=recipient.principal_id,
        receipt=receipt,
    )


def build_transfer_receipt(
    signer: DelegatedSigner, *, record_address: Address, namespace: str, to_owner: str
) -> Dict[str, Any]:
    """Signed statement that the proxy identity handed record_address to to_owner.

    Security notes:
    - Signature covers only the canonical claims, not the authenticity block.
    """

    claims = {
        "schema": dict(_TRANSFER_RECEIPT_SCHEMA),
        "record_address": record_address.value,
        "namespace": namespace,
        "from_owner": signer.signer_id,
        "to_owner": to_owner,
        "transferred_at": datetime.now(timezone.utc).isoformat(),
    }
    meta = signing_metadata(signer_id=signer.signer_id)
    return {
        "claims": claims,
        "signature": signer.sign(claims),
        "authenticity": {
            "algorithm": meta["algorithm"],
            "signed_at": meta["signed_at"],
            "signer_id": meta["signer_id"],
        },
    }


def verify_transfer_receipt(receipt: Mapping[str, Any], public_key_pem: str) -> bool:
    """Check a receipt's signature against the proxy identity's public key."""

    claims = receipt.get("claims")
    signature = receipt.get("signature")
    if not isinstance(claims, Mapping) or not isinstance(signature, str):
        return False
    return verify_detached_ed25519(load_public_key_pem(public_key_pem), claims, signature)
