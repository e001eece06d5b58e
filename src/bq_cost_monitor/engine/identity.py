"""
Actor classification: human user or service account.

Pure string-pattern rules, no lookups.
"""

from typing import Iterable, Optional, Sequence

from bq_cost_monitor.models import ActorIdentity, ActorKind

UNKNOWN_ACTOR = "Unknown"
DEFAULT_SERVICE_ACCOUNT_SUFFIXES = (".gserviceaccount.com",)
DEFAULT_SERVICE_ACCOUNT_PREFIXES = ("service-",)


def classify(
    actor_email: Optional[str],
    domain_suffixes: Sequence[str] = DEFAULT_SERVICE_ACCOUNT_SUFFIXES,
    prefixes: Sequence[str] = DEFAULT_SERVICE_ACCOUNT_PREFIXES,
) -> ActorIdentity:
    """
    Classify an actor email.

    An email is a service account when it ends with one of ``domain_suffixes``
    or starts with one of ``prefixes`` (case-insensitive). Empty or missing
    emails are human users keyed as "Unknown".
    """
    if actor_email is None or not actor_email.strip():
        return ActorIdentity(canonical_key=UNKNOWN_ACTOR, kind=ActorKind.USER)

    email = actor_email.strip()
    lowered = email.lower()

    if any(lowered.endswith(suffix.lower()) for suffix in domain_suffixes):
        return ActorIdentity(canonical_key=email, kind=ActorKind.SERVICE_ACCOUNT)
    if any(lowered.startswith(prefix.lower()) for prefix in prefixes):
        return ActorIdentity(canonical_key=email, kind=ActorKind.SERVICE_ACCOUNT)

    return ActorIdentity(canonical_key=email, kind=ActorKind.USER)


class IdentityNormalizer:
    """Classifier bound to configured service-account patterns."""

    def __init__(self, domain_suffixes: Iterable[str] = DEFAULT_SERVICE_ACCOUNT_SUFFIXES,
                 prefixes: Iterable[str] = DEFAULT_SERVICE_ACCOUNT_PREFIXES):
        self.domain_suffixes = tuple(domain_suffixes)
        self.prefixes = tuple(prefixes)

    def classify(self, actor_email: Optional[str]) -> ActorIdentity:
        return classify(actor_email, self.domain_suffixes, self.prefixes)

    @classmethod
    def from_settings(cls, settings) -> "IdentityNormalizer":
        return cls(settings.service_account_domain_suffixes, settings.service_account_prefixes)
