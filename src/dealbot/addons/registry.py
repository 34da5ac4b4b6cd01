"""
Registry of available preprocessing addons.

Built once at process start from an ordered list of addons. Registration
order is kept because it breaks priority ties. The registry is read-only
after construction.
"""

from collections.abc import Iterable, Iterator
from types import MappingProxyType

from ..logging import get_logger
from ..models.deal import ServiceType
from .base import DealAddon

logger = get_logger(__name__)


class AddonRegistry:
    """Lookup by name plus duplicate prevention. No other logic."""

    def __init__(self, addons: Iterable[DealAddon], default: DealAddon):
        """
        Args:
            addons: Addons in registration order
            default: Pass-through addon used when nothing else applies.
                     Registered as well if not already in ``addons``.
        """
        registered: dict[str, DealAddon] = {}
        for addon in [*addons, default]:
            key = addon.name.value
            if key in registered:
                if registered[key] is not addon:
                    logger.warning('addon_registry.duplicate_skipped', addon=key)
                continue
            registered[key] = addon
            logger.debug(
                'addon_registry.registered',
                addon=key,
                priority=addon.priority,
            )

        self._addons = MappingProxyType(registered)
        self._default = registered[default.name.value]

        logger.info(
            'addon_registry.ready',
            count=len(self._addons),
            addons=list(self._addons.keys()),
        )

    @property
    def default(self) -> DealAddon:
        return self._default

    @property
    def addons(self) -> tuple[DealAddon, ...]:
        """All addons in registration order."""
        return tuple(self._addons.values())

    def names(self) -> list[str]:
        return list(self._addons.keys())

    def get(self, name: str | ServiceType) -> DealAddon | None:
        key = name.value if isinstance(name, ServiceType) else name
        return self._addons.get(key)

    def is_registered(self, name: str | ServiceType) -> bool:
        return self.get(name) is not None

    def registered_addons(self) -> list[dict[str, object]]:
        """Name/priority pairs, for debugging and monitoring."""
        return [
            {'name': addon.name.value, 'priority': addon.priority}
            for addon in self._addons.values()
        ]

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, (str, ServiceType)):
            return False
        return self.is_registered(name)

    def __iter__(self) -> Iterator[DealAddon]:
        return iter(self._addons.values())

    def __len__(self) -> int:
        return len(self._addons)
