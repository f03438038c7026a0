"""
Logging and metrics for the claim routing service.
"""
