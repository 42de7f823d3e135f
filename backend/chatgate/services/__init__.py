"""Domain services: handshake broker, quota ledger, AI providers."""
