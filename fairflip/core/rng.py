import hashlib
import secrets

SEED_BYTES = 32


class SeedGenerator:
    """
    Seed material for the commit-reveal protocol, backed by Python's `secrets`
    module. Seeds are 32 random bytes encoded as 64 lowercase hex characters.
    """

    @staticmethod
    def generate_seed() -> str:
        """Returns a fresh cryptographically strong seed."""
        return secrets.token_hex(SEED_BYTES)

    @staticmethod
    def hash_seed(seed: str) -> str:
        """SHA-256 commitment of a seed. Used for both client and server seeds."""
        return hashlib.sha256(seed.encode("utf-8")).hexdigest()


rng = SeedGenerator()
generate_seed = rng.generate_seed
hash_seed = rng.hash_seed
