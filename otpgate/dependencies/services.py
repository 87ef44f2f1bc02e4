"""Service container dependency. Tests replace it through app.dependency_overrides."""
from functools import lru_cache

from ..services import IdentityServices, build_services


@lru_cache(maxsize=1)
def get_services() -> IdentityServices:
    return build_services()
