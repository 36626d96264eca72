"""Tier 2 and Tier 3 validation: agent panels, consensus and job orchestration."""
