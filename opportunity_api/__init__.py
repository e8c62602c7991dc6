"""Opportunity lifecycle and tiered-access service."""
