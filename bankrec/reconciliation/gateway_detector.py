"""
Gateway/entity detection from free-text bank descriptions.

Rules are evaluated top to bottom and the first match wins, so more specific
rules (Braintree sub-accounts) must come before generic ones (PayPal).
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple


@dataclass(frozen=True)
class GatewayRule:
    """
    A detection rule.

    all_of: every group must match; a group matches if any of its substrings occurs
    none_of: none of these substrings may occur
    """
    label: str
    all_of: Tuple[Tuple[str, ...], ...]
    none_of: Tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if any(term in text for term in self.none_of):
            return False
        return all(any(term in text for term in group) for group in self.all_of)


DEFAULT_RULES: Tuple[GatewayRule, ...] = (
    GatewayRule("braintree-amex", (("braintree",), ("amex", "american express"))),
    GatewayRule("braintree-gbp", (("braintree",), ("gbp",))),
    GatewayRule("braintree-usd", (("braintree",), ("usd",))),
    GatewayRule("braintree-eur", (("braintree",),)),
    GatewayRule("stripe", (("stripe",),)),
    GatewayRule("gocardless", (("gocardless", "go cardless"),)),
    GatewayRule("paypal", (("paypal",),), none_of=("braintree",)),
    GatewayRule("amex", (("amex", "american express"),)),
)

SOURCE_LABELS: Tuple[Tuple[str, str], ...] = (
    ("amex", "Braintree Amex"),
    ("gbp", "Braintree GBP"),
    ("usd", "Braintree USD"),
    ("braintree", "Braintree EUR"),
)


class GatewayDetector:
    """Ordered rule table mapping descriptions to gateway labels."""

    def __init__(self, rules: Optional[Iterable[GatewayRule]] = None):
        self.rules: Sequence[GatewayRule] = tuple(rules) if rules is not None else DEFAULT_RULES

    def detect(self, description: str) -> Optional[str]:
        text = (description or "").lower()
        if not text:
            return None
        for rule in self.rules:
            if rule.matches(text):
                return rule.label
        return None


_default_detector = GatewayDetector()


def detect_gateway(description: str) -> Optional[str]:
    """Detect the payment gateway named in a bank description, if any."""
    return _default_detector.detect(description)


def source_label(source: str) -> str:
    """Display label for a gateway feed key, e.g. "braintree-api-revenue-gbp"."""
    key = (source or "").lower()
    if "braintree" in key:
        for marker, label in SOURCE_LABELS:
            if marker in key:
                return label
    if "stripe" in key:
        return "Stripe"
    if "gocardless" in key:
        return "GoCardless"
    if "paypal" in key:
        return "PayPal"
    return source
