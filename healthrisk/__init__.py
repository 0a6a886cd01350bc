"""Deterministic health-risk classification and insight detection.

This package contains the knowledge base, the rule engine and the stacking
detector, isolated from extraction, persistence and transport so they can
be tested and reasoned about on their own.
"""
