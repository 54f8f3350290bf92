"""Registry of named OAuth2 profiles."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

from .exceptions import ProfileNotFound, ProviderConfigError
from .providers import OAuthProvider, create_provider_from_settings
from .types import Profile


if TYPE_CHECKING:
    from .config import ProfileSettings


class ProfileRegistry(Mapping[str, Profile]):
    """Read-only mapping of profile names to profiles.

    Parameters
    ----------
    profiles : Mapping[str, Profile | Mapping[str, Any]]
        Either ready ``Profile`` objects or ``{"provider": ..., "scope": [...]}``
        dicts keyed by profile name.
    """

    def __init__(self, profiles: Mapping[str, Profile | Mapping[str, Any]]) -> None:
        if not profiles:
            msg = "At least one OAuth2 profile must be registered"
            raise ProviderConfigError(msg)
        self._profiles: dict[str, Profile] = {}
        for name, value in profiles.items():
            self._profiles[name] = _coerce_profile(name, value)

    @classmethod
    def from_settings(
        cls, profiles: Mapping[str, ProfileSettings], timeout: float = 30.0
    ) -> ProfileRegistry:
        """Build a registry from configured ``ProfileSettings``."""
        return cls(
            {
                name: Profile(
                    name=name,
                    provider=create_provider_from_settings(settings, timeout=timeout),
                    scope=tuple(settings.scope),
                )
                for name, settings in profiles.items()
            }
        )

    def resolve(self, name: str) -> Profile:
        """Return the profile registered as ``name``.

        Raises
        ------
        ProfileNotFound
            If no such profile is registered.
        """
        try:
            return self._profiles[name]
        except KeyError:
            raise ProfileNotFound(name) from None

    def names(self) -> list[str]:
        """Registered profile names, in registration order."""
        return list(self._profiles)

    def providers(self) -> list[OAuthProvider]:
        """Distinct providers across all profiles."""
        seen: dict[int, OAuthProvider] = {}
        for profile in self._profiles.values():
            seen.setdefault(id(profile.provider), profile.provider)
        return list(seen.values())

    def __getitem__(self, name: str) -> Profile:
        return self._profiles[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)


def _coerce_profile(name: str, value: Profile | Mapping[str, Any]) -> Profile:
    if isinstance(value, Profile):
        if value.name != name:
            msg = f"Profile registered as '{name}' is named '{value.name}'"
            raise ProviderConfigError(msg, profile=name)
        return value
    provider = value.get("provider")
    if not isinstance(provider, OAuthProvider):
        msg = f"Profile '{name}' needs an OAuthProvider"
        raise ProviderConfigError(msg, profile=name)
    return Profile(name=name, provider=provider, scope=tuple(value.get("scope", ())))
