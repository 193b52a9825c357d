"""
Scripts Package.

Operational scripts for donation verification.

Scripts:
- verify_donations: Request on-chain verification for donations
"""

# Scripts are meant to be run directly, not imported
