"""Delta encoding: hashers, block index and codec."""
