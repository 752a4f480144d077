"""Out-of-band code delivery adapters (email, SMS)."""
