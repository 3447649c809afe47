"""
Core modules for Quota Gateway.

This package contains the quota ledger, day-key derivation, output budget
allocation and the error taxonomy shared by every layer.
"""
