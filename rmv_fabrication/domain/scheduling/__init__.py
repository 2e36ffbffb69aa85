"""
Scheduling Domain

Consultation appointments: booking, exact-timestamp staff assignment,
slot availability and the ocular-visit travel fee.
"""
