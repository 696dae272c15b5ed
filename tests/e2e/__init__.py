#!/usr/bin/env python3
"""
End-to-end tests for the bookmatch command line.

These tests execute actual CLI commands via subprocess against synthetic
batch files in temporary data directories.
"""
