"""Telephony webhook ingress."""
