"""
Test helper utilities for GASP testing.

This module provides reusable utilities for:
- Building annotation events and FLG samples on a fixed timeline
- Generating OSCAR Details rows and CSV files
"""
