"""
Disputes app: contested orders and their adjudication.

Modules:
    states: DisputeStatus, DisputeType
    models: Dispute
    services: DisputeService (open, resolve, cancel, eligibility)
"""
