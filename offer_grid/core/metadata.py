"""
Bundle metadata index.
Per-row annotations recording known bundle ranges. A hint for lookups, never authoritative.
"""

import json
from typing import Iterable, Optional, Tuple

from . import config
from .schema import BundleMetadataEntry
from .store import TabularStore
from ..util.logging import logger

BUNDLE_INFO_KEY = "bundleInfo"
BUNDLE_MARKER_KEY = "bundleMarker"


class BundleMetadataIndex:
    """Reads and writes bundle range annotations on the store."""

    def __init__(self, store: TabularStore, highlight: bool = None):
        self.store = store
        self.highlight = config.HIGHLIGHT_BUNDLES if highlight is None else highlight

    def get_entry(self, row: int) -> Optional[BundleMetadataEntry]:
        raw = self.store.get_row_metadata(row).get(BUNDLE_INFO_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
            return BundleMetadataEntry.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable bundle metadata on row {row}: {e}")
            return None

    def get_marker(self, row: int) -> Optional[str]:
        return self.store.get_row_metadata(row).get(BUNDLE_MARKER_KEY)

    def set_bundle(self, bundle_id: str, start_row: int, end_row: int) -> None:
        """Write the entry and grouping marker on every member row."""
        entry = BundleMetadataEntry(bundle_id=bundle_id, start_row=start_row, end_row=end_row)
        payload = json.dumps(entry.to_dict())

        for row in range(start_row, end_row + 1):
            self.store.set_row_metadata(row, BUNDLE_INFO_KEY, payload)
            if self.highlight and end_row > start_row:
                self.store.set_row_metadata(row, BUNDLE_MARKER_KEY, self._marker_for(row, start_row, end_row))

        logger.log_operation("bundle.index_set", "success",
                             {"bundle_id": bundle_id, "start_row": start_row, "end_row": end_row})

    def clear_range(self, start_row: int, end_row: int) -> None:
        if end_row < start_row:
            return
        self.store.clear_row_metadata(start_row, end_row, BUNDLE_INFO_KEY)
        self.store.clear_row_metadata(start_row, end_row, BUNDLE_MARKER_KEY)

    def clear_bundle(self, entry: BundleMetadataEntry) -> None:
        self.clear_range(entry.start_row, entry.end_row)
        logger.log_operation("bundle.index_cleared", "success", entry.to_dict())

    def rebuild(self, valid_ranges: Iterable[Tuple[str, int, int]], start_row: int, end_row: int) -> int:
        """Clear the data region's annotations and reapply the given multi-row ranges."""
        self.clear_range(start_row, end_row)
        count = 0
        for bundle_id, first, last in valid_ranges:
            if last > first:
                self.set_bundle(bundle_id, first, last)
                count += 1
        logger.log_operation("bundle.index_rebuilt", "success", {"bundles": count})
        return count

    @staticmethod
    def _marker_for(row: int, start_row: int, end_row: int) -> str:
        if row == start_row:
            return "start"
        if row == end_row:
            return "end"
        return "middle"
