"""
Test helper utilities for breathflow testing.

This module provides reusable utilities for:
- Generating synthetic prediction streams and spectra
- Validating feature vectors, metrics and snapshots
- Fake classifier collaborators for lifecycle and pipeline tests
"""
