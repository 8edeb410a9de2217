"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the collateralized debt engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_solvency.py - No successful operation leaves its user under-collateralized
2. test_atomicity.py - All-or-nothing operation semantics
3. test_conservation.py - Token balances match recorded positions
4. test_monotonicity.py - Health moves in the direction of the operation
5. test_liquidation_improvement.py - Liquidation strictly improves the position
6. test_determinism.py - Reproducible behavior

These tests use hypothesis for property-based testing.
"""
