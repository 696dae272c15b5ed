"""
Test Suite for bookmatch

Test Structure:
- fixtures/: Shared synthetic records, batches and CLI helpers
- unit/: Unit tests mirroring the src/ package structure
- integration/: Pipeline, configuration and CLI command tests
- e2e/: The bookmatch command run in a subprocess

Test Data:
All tenants, vendors, IBANs and amounts are synthetic.
"""
