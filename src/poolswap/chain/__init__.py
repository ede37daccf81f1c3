"""Ledger access, signing and transaction building."""
