"""
Payments Domain

The three payment stages of an approved project, cashier verification and receipts.
"""
