"""
Core lab booking services:
- BookingEngine: equipment booking conflict detection and booking lifecycle
- TokenManager: access/refresh token issuance, rotation and revocation
Both receive their storage collaborator and clock explicitly.
"""
from services.bookings import BookingEngine, BookingRequest, BookingChanges, ConflictCheck
from services.tokens import TokenManager, Session, AccessClaims

__all__ = [
    "BookingEngine",
    "BookingRequest",
    "BookingChanges",
    "ConflictCheck",
    "TokenManager",
    "Session",
    "AccessClaims",
]
