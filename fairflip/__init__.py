"""FairFlip: provably fair coin flip service."""

__version__ = "1.0.0"
