"""
User directory lookups consumed by the matching services.

The ride services never query the user table directly; they go through a
directory object so tests can inject a fake.
"""

from typing import Dict, Iterable, Optional, Set

from .models import User


class UserDirectory:
    """Django ORM backed directory of riders and drivers."""

    def get_driver(self, actor_id) -> Optional[User]:
        return User.objects.filter(id=actor_id, role='driver').first()

    def is_verified_driver(self, actor_id) -> bool:
        return User.objects.filter(id=actor_id, role='driver', verified=True).exists()

    def verified_drivers(self, actor_ids: Iterable) -> Set[int]:
        """Subset of actor_ids that are verified drivers, in one query."""
        ids = list(actor_ids)
        if not ids:
            return set()
        return set(
            User.objects.filter(id__in=ids, role='driver', verified=True)
            .values_list('id', flat=True)
        )

    def rating(self, actor_id) -> Optional[float]:
        """Driver rating, or None if the actor is unknown."""
        return User.objects.filter(id=actor_id).values_list('rating', flat=True).first()

    def drivers(self, actor_ids: Iterable) -> Dict[int, User]:
        """Driver users keyed by id, in one query."""
        return User.objects.filter(role='driver').in_bulk(list(actor_ids))
