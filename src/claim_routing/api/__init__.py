"""
HTTP surface of the claim routing service.
"""
