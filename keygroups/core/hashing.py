"""
Digest algorithms used to derive record addresses.
"""

import hashlib
from typing import Callable


class UnsupportedHashAlgorithm(Exception):
    pass


def match_name_to_algorithm(name: str) -> Callable[[bytes], "hashlib._Hash"]:
    match name:
        case "sha256":
            return hashlib.sha256
        case "blake2b":
            return lambda content: hashlib.blake2b(content, digest_size=32)
        case _:
            raise UnsupportedHashAlgorithm(f"Algorithm {name} not supported")


def checksum(content: bytes, hash_algorithm: str) -> str:
    """
    Hex digest of `content`. `hash_algorithm` must be one of the names
    accepted by `match_name_to_algorithm`, normally
    `settings.address_hash_algorithm`.
    """
    algorithm = match_name_to_algorithm(hash_algorithm)

    return algorithm(content).hexdigest()
