"""
Deterministic addressing for every record type.

A record's storage key is a pure function of its logical key components
(group id, member identity, code string). There is no central allocator:
uniqueness comes from the storage layer refusing to create a record at an
occupied key.
"""

from dataclasses import dataclass

from .errors import InvalidState
from .hashing import checksum

GROUP = b"group"
GROUP_MEMBER = b"group:member"
GROUP_CODE = b"group:code"
GROUP_INVITE = b"group:invite"
USERNAME = b"username"


@dataclass(frozen=True)
class DerivedAddress:
    """
    A storage location together with the proof that it was derived from the
    given namespace and seeds.
    """

    namespace: bytes
    seeds: tuple[bytes, ...]
    key: str
    proof: str

    def __str__(self) -> str:
        return self.key


def normalize_public_code(code: str) -> str:
    return code.strip().lower()


def normalize_username(username: str) -> str:
    return username.strip().lower()


def _frame(*parts: bytes) -> bytes:
    # Length-prefix every part so that seeds can never run into each other
    return b"".join(len(part).to_bytes(4, "little") + part for part in parts)


class AddressScheme:
    """
    Derives addresses within one deployment `domain`. Two schemes with the
    same domain and hash algorithm always agree.
    """

    domain: bytes
    hash_algorithm: str

    def __init__(self, domain: str | bytes, hash_algorithm: str = "sha256"):
        self.domain = domain.encode("utf-8") if isinstance(domain, str) else domain
        self.hash_algorithm = hash_algorithm

    def _key(self, namespace: bytes, seeds: tuple[bytes, ...]) -> str:
        return checksum(_frame(self.domain, namespace, *seeds), self.hash_algorithm)

    def _proof(self, key: str) -> str:
        return checksum(
            _frame(b"proof", self.domain, key.encode("ascii")), self.hash_algorithm
        )

    def derive(self, namespace: bytes, *seeds: bytes) -> DerivedAddress:
        key = self._key(namespace, seeds)
        return DerivedAddress(
            namespace=namespace, seeds=seeds, key=key, proof=self._proof(key)
        )

    def verify(self, address: DerivedAddress) -> bool:
        key = self._key(address.namespace, address.seeds)
        return key == address.key and self._proof(key) == address.proof

    def verify_record(
        self, address: DerivedAddress, stored_key: str, stored_proof: str
    ) -> None:
        """
        Confirm that a record read back from storage sits at, and carries the
        proof for, the address we derived for it.
        """
        if stored_key != address.key or stored_proof != address.proof:
            raise InvalidState("address proof mismatch")

    def group(self, group_id: bytes) -> DerivedAddress:
        return self.derive(GROUP, group_id)

    def member(self, group_id: bytes, member: bytes) -> DerivedAddress:
        return self.derive(GROUP_MEMBER, group_id, member)

    def code_lookup(self, public_code: str) -> DerivedAddress:
        code = normalize_public_code(public_code)
        return self.derive(GROUP_CODE, code.encode("utf-8"))

    def invite_link(self, group_id: bytes, invite_code: str) -> DerivedAddress:
        # Invite codes are case sensitive, unlike public codes
        return self.derive(GROUP_INVITE, group_id, invite_code.encode("utf-8"))

    def username(self, username: str) -> DerivedAddress:
        return self.derive(USERNAME, normalize_username(username).encode("utf-8"))
