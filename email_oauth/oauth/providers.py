"""Well-known OAuth providers for email accounts.

Providers are compiled in; a registry instance maps an email address to
the provider that issues tokens for its domain. Registries are plain
values so tests can build one from fixture providers.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """OAuth endpoints and scopes for one provider.

    Attributes:
        name: Short identifier, also the key for client credentials
        authorization_endpoint: Browser authorization URL
        token_endpoint: Token endpoint for code and refresh grants
        scopes: Scopes requested, in order
        domains: Email domains routed to this provider
        console_url: Where to create OAuth client credentials
    """

    name: str
    authorization_endpoint: str
    token_endpoint: str
    scopes: tuple[str, ...]
    domains: frozenset[str]
    console_url: str = ""

    @property
    def scope_string(self) -> str:
        """Space-separated scope list for the authorization request."""
        return " ".join(self.scopes)


GOOGLE_PROVIDER = ProviderConfig(
    name="google",
    authorization_endpoint="https://accounts.google.com/o/oauth2/v2/auth",
    token_endpoint="https://oauth2.googleapis.com/token",
    scopes=("https://mail.google.com/",),
    domains=frozenset({"gmail.com", "googlemail.com"}),
    console_url="https://console.cloud.google.com/apis/credentials",
)

MICROSOFT_PROVIDER = ProviderConfig(
    name="microsoft",
    authorization_endpoint="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
    token_endpoint="https://login.microsoftonline.com/common/oauth2/v2.0/token",
    scopes=(
        "https://outlook.office365.com/IMAP.AccessAsUser.All",
        "https://outlook.office365.com/SMTP.Send",
        "offline_access",
    ),
    domains=frozenset({"outlook.com", "hotmail.com", "live.com"}),
    console_url="https://portal.azure.com/#view/Microsoft_AAD_RegisteredApps",
)

BUILTIN_PROVIDERS: tuple[ProviderConfig, ...] = (GOOGLE_PROVIDER, MICROSOFT_PROVIDER)


def email_domain(email: str) -> str | None:
    """Return the lowercased domain part of an email, or None."""
    _, sep, domain = email.strip().rpartition("@")
    if not sep or not domain:
        return None
    return domain.lower()


class ProviderRegistry:
    """Ordered, immutable set of providers with email-domain lookup."""

    def __init__(self, providers: Iterable[ProviderConfig] = BUILTIN_PROVIDERS):
        """Build a registry.

        Args:
            providers: Providers in lookup order

        Raises:
            ValueError: If two providers share a name or a domain
        """
        self._providers: tuple[ProviderConfig, ...] = tuple(providers)

        seen_names: set[str] = set()
        owner: dict[str, str] = {}
        for provider in self._providers:
            if provider.name in seen_names:
                raise ValueError(f"Duplicate provider name: {provider.name}")
            seen_names.add(provider.name)
            for domain in provider.domains:
                if domain in owner:
                    raise ValueError(
                        f"Domain {domain} is claimed by both "
                        f"{owner[domain]} and {provider.name}"
                    )
                owner[domain] = provider.name

    def __iter__(self):
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def names(self) -> list[str]:
        """Provider names in registry order."""
        return [p.name for p in self._providers]

    def get(self, name: str) -> ProviderConfig | None:
        """Look up a provider by name (case-insensitive)."""
        wanted = name.strip().lower()
        for provider in self._providers:
            if provider.name == wanted:
                return provider
        return None

    def detect_provider(self, email: str) -> ProviderConfig | None:
        """Map an email address to its provider.

        Exact domain matches win over subdomain matches, so
        ``user@mail.outlook.com`` resolves through ``outlook.com``.

        Args:
            email: Email address

        Returns:
            The matching provider, or None if the domain is unknown
        """
        domain = email_domain(email)
        if domain is None:
            return None

        for provider in self._providers:
            if domain in provider.domains:
                return provider

        for provider in self._providers:
            for known in provider.domains:
                if domain.endswith(f".{known}"):
                    return provider

        return None

    def is_supported(self, email: str) -> bool:
        """Check whether OAuth is available for an email address."""
        return self.detect_provider(email) is not None

    def describe(self) -> str:
        """Human-readable list of supported providers and their domains."""
        return ", ".join(
            f"{p.name} ({', '.join(sorted(p.domains))})" for p in self._providers
        )


def default_registry() -> ProviderRegistry:
    """Create a registry holding the built-in providers."""
    return ProviderRegistry(BUILTIN_PROVIDERS)
