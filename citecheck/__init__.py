"""
Citation Consensus Checker.

Tiered legal citation checking: pattern identification, a blind multi-agent
scoring panel with statistical consensus, and escalation of uncertain
citations to a deeper investigation panel.
"""

__version__ = "0.1.0"
