"""Renewal record reconciliation and query service."""
