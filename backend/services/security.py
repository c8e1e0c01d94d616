"""
Device fingerprint and one-way hashing helpers.

Refresh tokens are several hundred bytes long, so they are hashed with
argon2 (no input length limit) rather than a scheme that truncates input.
"""

import asyncio
import ipaddress
import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

logger = logging.getLogger(__name__)


def truncate_ip(ip: str) -> str:
    """
    Reduce an address to its network prefix.

    IPv4 keeps the first three octets (203.0.113.77 -> 203.0.113.0).
    IPv6 keeps the first four groups and zeroes the rest.
    Input that does not parse as an address is returned unchanged.
    """
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return ip

    if address.version == 4:
        network = ipaddress.ip_network(f"{address}/24", strict=False)
    else:
        if address.ipv4_mapped:
            return truncate_ip(str(address.ipv4_mapped))
        network = ipaddress.ip_network(f"{address}/64", strict=False)
    return str(network.network_address)


class SecretHasher:
    """Thin wrapper around argon2's PasswordHasher with a tunable work factor."""

    def __init__(self, time_cost: int, memory_cost: int, parallelism: int):
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
        )

    def hash(self, secret: str) -> str:
        return self._hasher.hash(secret)

    def verify(self, hashed: str, secret: str) -> bool:
        try:
            return self._hasher.verify(hashed, secret)
        except VerificationError:
            return False
        except InvalidHashError:
            logger.warning("Stored hash is not a valid argon2 hash")
            return False

    def needs_rehash(self, hashed: str) -> bool:
        return self._hasher.check_needs_rehash(hashed)

    # argon2 is CPU bound; run it off the event loop so requests hash in parallel
    async def hash_async(self, secret: str) -> str:
        return await asyncio.to_thread(self.hash, secret)

    async def verify_async(self, hashed: str, secret: str) -> bool:
        return await asyncio.to_thread(self.verify, hashed, secret)
