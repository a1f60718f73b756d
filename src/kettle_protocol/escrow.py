"""
Escrow registry: which custodian holds pledged collateral per collection.

A collection must be registered before any lien can reference it, even when
the registration only selects default self-custody. "Never configured" and
"configured for self-custody" are distinct states.
"""

import logging
from typing import Dict, Optional

from .errors import NoEscrowImplementation
from .models import EscrowRegistration
from .utils import normalize_address, is_zero_address

logger = logging.getLogger(__name__)


class EscrowRegistry:
    """Per-collection custody routing"""

    def __init__(self, self_custodian: str):
        self.self_custodian = normalize_address(self_custodian)
        self._registrations: Dict[str, EscrowRegistration] = {}

    def set_escrow(self, collection: str, custodian: Optional[str] = None) -> EscrowRegistration:
        """Register a collection; None or the zero address selects self-custody"""
        if custodian is not None and is_zero_address(custodian):
            custodian = None
        registration = EscrowRegistration(
            custodian=normalize_address(custodian) if custodian is not None else None
        )
        self._registrations[normalize_address(collection).lower()] = registration
        logger.info(f"Escrow for {collection} set to {registration.custodian or 'self-custody'}")
        return registration

    def registration(self, collection: str) -> Optional[EscrowRegistration]:
        return self._registrations.get(collection.lower())

    def is_configured(self, collection: str) -> bool:
        return self.registration(collection) is not None

    def resolve_custodian(self, collection: str) -> str:
        """Address that receives collateral for this collection"""
        registration = self.registration(collection)
        if registration is None:
            raise NoEscrowImplementation(f"No escrow configured for collection {collection}")
        return registration.custodian or self.self_custodian

    def snapshot(self) -> Dict[str, EscrowRegistration]:
        return dict(self._registrations)

    def restore(self, state: Dict[str, EscrowRegistration]) -> None:
        self._registrations = state
