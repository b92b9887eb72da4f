"""
Commitment / nullifier scheme.

commitment    = H(nullifier, secret)
nullifierHash = H(nullifier)

Both are pure functions of the voter-held pair; ``recreate`` must give
bit-for-bit the values ``generate`` produced at registration.
"""

import secrets
from dataclasses import dataclass
from typing import Any, Dict, Union

from errors import ValidationError
from zk.hashing import FIELD_SIZE, mimc_hash

# 31 bytes keeps every draw below the field modulus before reduction
SECRET_BYTES = 31


@dataclass(frozen=True)
class CommitmentPair:
    commitment: int
    nullifier_hash: int


@dataclass(frozen=True)
class Credentials:
    """Voter-held credential pair plus its public derivations"""
    nullifier: int
    secret: int
    commitment: int
    nullifier_hash: int

    def to_dict(self) -> Dict[str, str]:
        return {
            'nullifier': str(self.nullifier),
            'secret': str(self.secret),
            'commitment': str(self.commitment),
            'nullifierHash': str(self.nullifier_hash),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Credentials':
        nullifier = parse_field_element(data.get('nullifier'), 'nullifier')
        secret = parse_field_element(data.get('secret'), 'secret')
        pair = recreate(nullifier, secret)
        return cls(nullifier, secret, pair.commitment, pair.nullifier_hash)


def parse_field_element(value: Union[int, str, None], name: str = "value") -> int:
    """Accept int, decimal string or 0x-hex string"""
    if value is None or value == "":
        raise ValidationError(f"Missing {name}")

    if isinstance(value, bool):
        raise ValidationError(f"Invalid {name}: {value!r}")

    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text, 16) if text.lower().startswith('0x') else int(text, 10)
        except ValueError:
            raise ValidationError(f"Invalid {name}: {value!r}") from None
    else:
        raise ValidationError(f"Invalid {name} type: {type(value).__name__}")

    if number < 0 or number >= FIELD_SIZE:
        raise ValidationError(f"{name} outside field bounds")
    return number


def random_field_element() -> int:
    return int.from_bytes(secrets.token_bytes(SECRET_BYTES), 'big') % FIELD_SIZE


def recreate(nullifier: int, secret: int) -> CommitmentPair:
    """Recompute (commitment, nullifierHash); no randomness, no I/O"""
    return CommitmentPair(
        commitment=mimc_hash([nullifier, secret]),
        nullifier_hash=mimc_hash([nullifier]),
    )


def generate() -> Credentials:
    """Draw a fresh (nullifier, secret) pair and derive its commitment"""
    nullifier = random_field_element()
    secret = random_field_element()
    pair = recreate(nullifier, secret)
    return Credentials(nullifier, secret, pair.commitment, pair.nullifier_hash)


def nullifier_hash(nullifier: int) -> int:
    return mimc_hash([nullifier])


