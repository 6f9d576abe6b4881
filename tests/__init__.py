"""
Test suite for MediSlot.

Covers the booking engine, the reconciliation sweep, schedule administration
and the HTTP API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
