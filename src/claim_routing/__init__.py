"""
claim-routing: rule-based routing of claim and objection events to reviewers.
"""

__version__ = "0.1.0"
