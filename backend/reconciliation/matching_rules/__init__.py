"""
Matching Rules Module
"""

from .payment_rules import PaymentMatchingRules, payment_rules, MatchResult

__all__ = ["PaymentMatchingRules", "payment_rules", "MatchResult"]
