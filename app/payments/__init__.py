"""
Payments app: escrow, refunds and the Stripe gateway.

This app handles:
- Escrow lifecycle (hold, release to the seller, refund to the buyer)
- Refunds with an append-only RefundAttempt ledger
- Per-order settlement locks and optimistic versioning
- Stripe webhook intake for payment results
- The periodic auto-release sweep (Celery)

Related apps:
    - orders: Orders whose payments are held here
    - disputes: Freezes escrow while a claim is open
    - notifications: Release and refund notices

Usage:
    from payments.services import EscrowService, RefundService

    result = EscrowService.release(escrow.id, reason=ReleaseReason.BUYER_CONFIRMED)
    result = RefundService.refund_order(order.id, 2500, "Damaged item")
"""
