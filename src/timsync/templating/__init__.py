"""Handlebars templating for TIM markdown."""

from .engine import RenderResult, TemplateEngine
from .identifiers import Region, RegionIdAssigner, is_valid_id, region_id

__all__ = [
    "Region",
    "RegionIdAssigner",
    "RenderResult",
    "TemplateEngine",
    "is_valid_id",
    "region_id",
]
