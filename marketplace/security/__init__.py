"""
Access Control Module
"""
from .policies import Action, Caller, CallerRole, Policy, PolicyEvaluator, DEFAULT_POLICIES

__all__ = [
    "Action",
    "Caller",
    "CallerRole",
    "Policy",
    "PolicyEvaluator",
    "DEFAULT_POLICIES",
]
