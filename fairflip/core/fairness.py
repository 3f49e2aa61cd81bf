"""
Provably fair outcome for the coin flip.

Commit-reveal scheme:
1. The bettor commits to a client seed by sending its hash.
2. The server commits to a server seed and returns its hash.
3. The bettor reveals the client seed.
4. SHA-256(client_seed + server_seed) decides the side.
5. Every input is stored so anyone can recompute the result.
"""

import hashlib
import hmac
import re
import time
from typing import Dict, List

from fairflip.core.exceptions import FlipValidationError
from fairflip.core.rng import hash_seed

SIDES = ("heads", "tails")

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


def is_hex_digest(value: str) -> bool:
    return bool(value) and bool(_HEX_DIGEST.match(value))


def combine_seeds(client_seed: str, server_seed: str) -> str:
    """Digest of client seed followed by server seed. Order matters."""
    return hashlib.sha256((client_seed + server_seed).encode("utf-8")).hexdigest()


def determine_result(combined_hash: str) -> str:
    """
    Map a combined hash to a side.

    The first byte of the hash is taken modulo 2: even is heads, odd is tails.
    A byte has 256 values, 128 of each parity, so the split is exactly 50/50.
    """
    if not combined_hash or len(combined_hash) < 2:
        raise FlipValidationError("Combined hash is too short")
    try:
        first_byte = int(combined_hash[:2], 16)
    except ValueError:
        raise FlipValidationError("Combined hash is not hexadecimal")
    return SIDES[first_byte % 2]


def verify_seed(seed: str, seed_hash: str) -> bool:
    """Check that a seed matches its commitment."""
    if seed is None or not seed_hash:
        return False
    # compare_digest rejects non-ASCII str, so anything but a hex digest is a mismatch
    seed_hash = seed_hash.lower()
    if not is_hex_digest(seed_hash):
        return False
    return hmac.compare_digest(hash_seed(seed), seed_hash)


def verify_bet_outcome(
    client_seed: str,
    client_seed_hash: str,
    server_seed: str,
    server_seed_hash: str,
    combined_hash: str,
    result: str,
) -> Dict:
    """
    Recompute every derived value of a bet and report each mismatch.

    This is the audit function a third party runs to confirm the house
    did not change the outcome after the fact.

    Returns:
        Dict with `valid` flag and the list of `errors` found
    """
    errors: List[str] = []

    if not verify_seed(client_seed, client_seed_hash):
        errors.append("Client seed does not match client seed hash")

    if not verify_seed(server_seed, server_seed_hash):
        errors.append("Server seed does not match server seed hash")

    expected_combined = combine_seeds(client_seed or "", server_seed or "")
    if combined_hash != expected_combined:
        errors.append("Combined hash does not match expected value")

    try:
        expected_result = determine_result(combined_hash)
    except FlipValidationError as e:
        errors.append(f"Combined hash is malformed: {e.message}")
    else:
        if result != expected_result:
            errors.append(f"Result should be {expected_result}, got {result}")

    return {"valid": not errors, "errors": errors}


def generate_proof(
    bet_id: str,
    client_seed: str,
    client_seed_hash: str,
    server_seed: str,
    server_seed_hash: str,
    choice: str,
    forfeited: bool = False,
) -> Dict:
    """
    Bundle everything needed to recompute a bet's outcome.

    A forfeited bet (revealed after its window) keeps its recomputable
    result but is never a winner, matching how it was settled.
    """
    combined_hash = combine_seeds(client_seed, server_seed)
    result = determine_result(combined_hash)

    return {
        "betId": bet_id,
        "clientSeed": client_seed,
        "clientSeedHash": client_seed_hash,
        "serverSeed": server_seed,
        "serverSeedHash": server_seed_hash,
        "combinedHash": combined_hash,
        "result": result,
        "choice": choice,
        "isWinner": result == choice and not forfeited,
        "forfeited": forfeited,
        "timestamp": int(time.time() * 1000),
    }
