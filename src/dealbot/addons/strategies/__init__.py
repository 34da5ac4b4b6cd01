"""Concrete addon strategies: direct storage, CDN, IPNI."""

from .cdn import CdnAddonStrategy
from .direct import DirectAddonStrategy
from .ipni import IpniAddonStrategy

__all__ = [
    'CdnAddonStrategy',
    'DirectAddonStrategy',
    'IpniAddonStrategy',
]
