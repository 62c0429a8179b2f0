from __future__ import annotations

from .policy import WILDCARD, PolicyConfig


def should_update(name: str, force_all: bool, policy: PolicyConfig) -> bool:
    """Decide whether the container called `name` gets recreated.

    Order matters:
      1) force_all updates everything
      2) '*' in include updates everything not excluded
      3) an exact include wins over an exact exclude
      4) an exact exclude skips the container
      5) anything else is left alone
    """
    if force_all:
        return True

    if WILDCARD in policy.include_containers:
        return name not in policy.exclude_containers

    if name in policy.include_containers:
        return True

    if name in policy.exclude_containers:
        return False

    return False
