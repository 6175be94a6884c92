"""
User roles enumeration.

Defines the role types for the dental lab back office.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Lab administrator, the only role allowed to run billing
        TECHNICIAN: Lab technician working on orders
        CLINIC_ADMIN: Manages a clinic and its dentists
        DENTIST: Orders work from the lab and is billed for it
        LAB: Partner laboratory account
        CLIENT: Billed party without a dentist profile (default role)
    """
    ADMIN = "ADMIN"
    TECHNICIAN = "TECHNICIAN"
    CLINIC_ADMIN = "CLINIC_ADMIN"
    DENTIST = "DENTIST"
    LAB = "LAB"
    CLIENT = "CLIENT"
