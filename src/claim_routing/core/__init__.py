"""
Core domain of the claim routing service: models, rules and errors.
"""
