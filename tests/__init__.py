"""
Test suite for the Citation Consensus Checker.

Organized by module:
- test_identification.py - Tier-1 patterns, format checks, markers, context
- test_reconciler.py - Stable citation identity across paragraph edits
- test_response_parser.py - Agent response parsing and token accounting
- test_agents.py - LLM-backed panel agents and prompts
- test_panel.py - Panel fan-out, timeouts and retries
- test_consensus.py - Consensus calculation
- test_escalation.py - Tier-3 investigation and case-link lookup
- test_pipeline.py - Per-citation stage machine
- test_orchestrator.py - Validation jobs
- test_snapshot_store.py - Document snapshot versions
- test_service.py - Check workflows
- test_risk.py - Effective risk and summaries
- test_api.py - FastAPI endpoint tests
- test_llm_factory.py - LLM backend selection
"""

# Test fixtures are provided in conftest.py
