"""Shared helpers: clock, email normalisation, audit trail."""
