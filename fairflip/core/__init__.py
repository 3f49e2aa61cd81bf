"""Provably fair coin flip engine."""
