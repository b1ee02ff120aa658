"""
Tests for the payments app.

This package contains test modules for:
- test_locks.py: DistributedLock, settlement_lock, check_version
- test_models.py: Escrow transitions, RefundAttempt immutability
- test_services.py: RefundService and EscrowService
- test_views.py: Escrow API endpoints
- test_webhooks.py: Stripe webhook handler
- test_integration.py: End-to-end settlement scenarios

Usage:
    pytest payments/tests/
    pytest payments/tests/test_services.py
"""
