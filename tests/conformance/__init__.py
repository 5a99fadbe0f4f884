"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the sandbox network and the
builders on top of it. Any compliant network implementation MUST pass
these tests.

The tests are organized by invariant:
1. conservation.py - Token supply and hbar supply are conserved
2. atomicity.py - All-or-nothing transfers, fee-only rejections
3. idempotency.py - Duplicate submission handling
4. determinism.py - Reproducible state, canonical transaction bodies
5. temporal.py - Consensus time and message ordering

These tests use hypothesis for property-based testing.
"""
