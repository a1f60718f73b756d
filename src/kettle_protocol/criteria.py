"""
Collateral criteria verification.

Exact offers name one token id. Criteria offers carry a Merkle root over the
eligible token ids; a leaf is keccak256(abi.encode(uint256 tokenId)) and each
internal node hashes its two children in sorted order, so proofs carry no
left/right flags.
"""

import logging
from typing import Dict, Iterable, List, Sequence

from eth_abi import encode
from eth_utils import keccak

from .errors import InvalidCollateral, InvalidCollateralCriteria, InvalidCollateralSize
from .hashing import collateral_hash
from .types import CollateralType
from .utils import to_bytes32

logger = logging.getLogger(__name__)

__all__ = [
    "MerkleTree",
    "hash_token_id",
    "hash_pair",
    "verify_proof",
    "verify_collateral",
    "collateral_hash",
]


def hash_token_id(token_id: int) -> bytes:
    """Merkle leaf for a token id"""
    return keccak(encode(["uint256"], [token_id]))


def hash_pair(a: bytes, b: bytes) -> bytes:
    """Internal node: children hashed in sorted order"""
    return keccak(a + b) if a <= b else keccak(b + a)


def verify_proof(root: bytes, leaf: bytes, proof: Sequence[bytes]) -> bool:
    computed = leaf
    for node in proof:
        computed = hash_pair(computed, to_bytes32(node))
    return computed == to_bytes32(root)


class MerkleTree:
    """Merkle tree over a set of token ids, for building criteria offers"""

    def __init__(self, token_ids: Iterable[int]):
        ids = sorted(set(token_ids))
        if not ids:
            raise ValueError("Merkle tree requires at least one token id")

        leaves = sorted((hash_token_id(token_id), token_id) for token_id in ids)
        self._index: Dict[int, int] = {token_id: i for i, (_, token_id) in enumerate(leaves)}
        self._levels: List[List[bytes]] = [[leaf for leaf, _ in leaves]]

        current_level = self._levels[0]
        while len(current_level) > 1:
            next_level = []
            for i in range(0, len(current_level), 2):
                if i + 1 < len(current_level):
                    next_level.append(hash_pair(current_level[i], current_level[i + 1]))
                else:
                    next_level.append(current_level[i])
            self._levels.append(next_level)
            current_level = next_level

    @property
    def root(self) -> bytes:
        return self._levels[-1][0]

    @property
    def root_int(self) -> int:
        """Root as the uint256 carried in an offer identifier"""
        return int.from_bytes(self.root, "big")

    @property
    def token_ids(self) -> List[int]:
        return sorted(self._index)

    def proof(self, token_id: int) -> List[bytes]:
        """Sibling path from the token's leaf to the root"""
        if token_id not in self._index:
            raise KeyError(f"Token {token_id} is not part of this tree")

        path = []
        index = self._index[token_id]
        for level in self._levels[:-1]:
            sibling = index ^ 1
            if sibling < len(level):
                path.append(level[sibling])
            index //= 2
        return path


def verify_collateral(collateral_type: CollateralType, token_id: int, size: int,
                      identifier: int, offer_size: int, proof: Sequence[bytes] = ()) -> None:
    """
    Check that a presented asset satisfies an offer's collateral terms.

    Raises:
        InvalidCollateral: exact offer names a different token id.
        InvalidCollateralCriteria: proof does not place the token under the root.
        InvalidCollateralSize: quantity differs from the offer.
    """
    collateral_type = CollateralType(collateral_type)

    if collateral_type.is_criteria:
        if not verify_proof(to_bytes32(identifier), hash_token_id(token_id), proof):
            logger.debug(f"Criteria proof rejected for token {token_id}")
            raise InvalidCollateralCriteria(f"Token {token_id} is not covered by the offer criteria")
    elif token_id != identifier:
        raise InvalidCollateral(f"Token {token_id} does not match offer identifier {identifier}")

    if collateral_type.is_countable:
        if size != offer_size:
            raise InvalidCollateralSize(f"Collateral size {size} does not match offer size {offer_size}")
    elif size != 1 or offer_size != 1:
        raise InvalidCollateralSize(f"Unique collateral must have size 1, got {size}")
