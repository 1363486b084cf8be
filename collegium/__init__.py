"""
Collegium: business-rule and consistency layer for academic records.

Decides whether students may enroll in sections, whether instructors may be
assigned time slots, how grades aggregate into weighted GPAs, how payments
are mirrored into an immutable audit trail, and when a student graduates.
"""

__version__ = "1.0.0"
__author__ = "Collegium Development Team"
__description__ = "Business-rule and consistency layer for academic records"
