"""
Core domain models, errors, ports and invariants.

This module contains the building blocks shared by the session and intent
managers, independent of the external systems they call (bonding curve,
factory, token ledger).
"""
