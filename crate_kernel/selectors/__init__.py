"""Read-only query selectors."""

from crate_kernel.selectors.base import BaseSelector
from crate_kernel.selectors.conflict_selector import ConflictSelector
from crate_kernel.selectors.stock_aggregator import StockAggregator

__all__ = ["BaseSelector", "ConflictSelector", "StockAggregator"]
