"""Lending and flash-loan protocol adapters."""
