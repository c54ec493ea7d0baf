"""Discovery filtering: which advertised peripherals a profile accepts."""

from __future__ import annotations

from collections.abc import Iterable

from hidbridge.core.model import PeripheralIdentity, Profile


def matches_profile(identity: PeripheralIdentity, profile: Profile) -> bool:
    if not identity.name:
        return False
    return identity.name == profile.match.name


def profile_for_identity(
    identity: PeripheralIdentity,
    profiles: Iterable[Profile],
) -> Profile | None:
    for profile in profiles:
        if matches_profile(identity, profile):
            return profile
    return None
