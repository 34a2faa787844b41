"""
Configuration cache for the sheet-level settings cells.
"""

import time
from typing import Callable, Optional

from . import config
from .numeric import cell_text
from .schema import ConfigurationSnapshot
from .store import TabularStore
from ..util.logging import logger


class ConfigurationCache:
    """
    Short-lived cache of {language, deal_flag}.

    Reads may be stale by at most ttl_sec between invalidations. Edits on
    either settings cell call invalidate().
    """

    def __init__(self, store: TabularStore, ttl_sec: int = None,
                 clock: Callable[[], float] = time.monotonic,
                 language_cell: str = None, deal_flag_cell: str = None):
        self.store = store
        self.ttl_sec = config.get_settings_cache_ttl() if ttl_sec is None else ttl_sec
        self.clock = clock
        self.language_cell = config.parse_a1(language_cell or config.LANGUAGE_CELL)
        self.deal_flag_cell = config.parse_a1(deal_flag_cell or config.DEAL_FLAG_CELL)
        self._snapshot: Optional[ConfigurationSnapshot] = None
        self._loaded_at = 0.0

    def get(self) -> ConfigurationSnapshot:
        now = self.clock()
        if self._snapshot is not None and (now - self._loaded_at) < self.ttl_sec:
            return self._snapshot

        self._snapshot = self._load()
        self._loaded_at = now
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None
        logger.log_operation("settings.invalidate", "success")

    def is_settings_cell(self, row: int, col: int) -> bool:
        return (row, col) in (self.language_cell, self.deal_flag_cell)

    def is_deal_flag_cell(self, row: int, col: int) -> bool:
        return (row, col) == self.deal_flag_cell

    def _load(self) -> ConfigurationSnapshot:
        language = cell_text(self.store.get_cell(*self.language_cell)).lower() or config.DEFAULT_LANGUAGE
        deal_flag = cell_text(self.store.get_cell(*self.deal_flag_cell)).lower() == "yes"
        snapshot = ConfigurationSnapshot(language=language, deal_flag=deal_flag)
        logger.log_operation("settings.load", "success", snapshot.to_dict())
        return snapshot
