"""
Test Fixtures and Utilities

Synthetic documents, transactions and batch files, plus helpers for
running the CLI in end-to-end tests. All data is synthetic.
"""
