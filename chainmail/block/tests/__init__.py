# chainmail/block/tests/__init__.py
"""
ChainMail Block: Test Suite

End-to-end scenarios for the complete block module, on in-memory backends.

Run all tests:
    python -m chainmail.block.tests.test_integration

Test coverage:
    - Registration and sign-in
    - Local and cross-domain delivery
    - Paged backfill and threads
    - Contact lists
    - Live listening
"""

from .test_integration import run_tests

__all__ = ["run_tests"]
