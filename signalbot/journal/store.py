"""
Persistence for signal records.

The JSON store keeps the whole collection in one document and rewrites it on
every mutation (read → modify → write). That is only safe with a single
writer; ``SignalDesk`` serialises operator actions to guarantee it.

All functions are synchronous; wrap in asyncio.to_thread() when calling
from async contexts (Discord bot).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional, Protocol

from signalbot.errors import StoreIOError
from signalbot.journal.models import ACTIVE_STATUSES, Signal

logger = logging.getLogger(__name__)


def _empty_document() -> dict[str, Any]:
    return {"signals": [], "summary_message_id": None}


def _merge(record: Signal, fields: dict[str, Any]) -> Signal:
    if "id" in fields and fields["id"] != record.id:
        raise ValueError("signal id is immutable")
    return replace(record, **fields)


class SignalRepository(Protocol):
    """Storage contract shared by every backing store."""

    def create(self, signal: Signal) -> Signal: ...

    def get_all(self) -> list[Signal]: ...

    def get_by_id(self, signal_id: str) -> Optional[Signal]: ...

    def patch(self, signal_id: str, fields: dict[str, Any]) -> Optional[Signal]: ...

    def delete(self, signal_id: str) -> None: ...

    def list_active(self) -> list[Signal]: ...

    def get_summary_ref(self) -> Optional[int]: ...

    def set_summary_ref(self, message_id: Optional[int]) -> None: ...


class JsonSignalStore:
    """Flat-file store: ``{"signals": [...], "summary_message_id": ...}``."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    # -- document I/O --------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            self._save(_empty_document())
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                doc = json.load(fh)
        except json.JSONDecodeError as exc:
            raise StoreIOError(f"Signals file {self.path} is not valid JSON: {exc}") from exc
        except OSError as exc:
            raise StoreIOError(f"Cannot read signals file {self.path}: {exc}") from exc

        doc.setdefault("signals", [])
        doc.setdefault("summary_message_id", None)
        return doc

    def _save(self, doc: dict[str, Any]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(doc, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StoreIOError(f"Cannot write signals file {self.path}: {exc}") from exc

    # -- signals -------------------------------------------------------------

    def create(self, signal: Signal) -> Signal:
        """Insert ``signal`` at the front (newest first)."""
        doc = self._load()
        doc["signals"] = [signal.to_dict()] + [
            s for s in doc["signals"] if s.get("id") != signal.id
        ]
        self._save(doc)
        logger.debug(f"Stored signal {signal.id}")
        return signal

    def get_all(self) -> list[Signal]:
        return [Signal.from_dict(s) for s in self._load()["signals"]]

    def get_by_id(self, signal_id: str) -> Optional[Signal]:
        for s in self._load()["signals"]:
            if s.get("id") == signal_id:
                return Signal.from_dict(s)
        return None

    def patch(self, signal_id: str, fields: dict[str, Any]) -> Optional[Signal]:
        """
        Shallow-merge ``fields`` into the stored record.

        Returns the updated signal, or None when no record has that id
        (nothing is created).
        """
        doc = self._load()
        for i, raw in enumerate(doc["signals"]):
            if raw.get("id") == signal_id:
                updated = _merge(Signal.from_dict(raw), fields)
                doc["signals"][i] = updated.to_dict()
                self._save(doc)
                return updated
        logger.warning(f"Patch skipped, signal {signal_id} not found")
        return None

    def delete(self, signal_id: str) -> None:
        doc = self._load()
        remaining = [s for s in doc["signals"] if s.get("id") != signal_id]
        if len(remaining) == len(doc["signals"]):
            return
        doc["signals"] = remaining
        self._save(doc)
        logger.debug(f"Deleted signal {signal_id}")

    def list_active(self) -> list[Signal]:
        return [s for s in self.get_all() if s.status in ACTIVE_STATUSES]

    # -- summary message pointer ---------------------------------------------

    def get_summary_ref(self) -> Optional[int]:
        return self._load()["summary_message_id"]

    def set_summary_ref(self, message_id: Optional[int]) -> None:
        doc = self._load()
        doc["summary_message_id"] = message_id
        self._save(doc)


class MemorySignalStore:
    """In-process store with the same contract; nothing survives a restart."""

    def __init__(self):
        self._signals: list[Signal] = []
        self._summary_ref: Optional[int] = None

    def create(self, signal: Signal) -> Signal:
        self._signals = [signal] + [s for s in self._signals if s.id != signal.id]
        return signal

    def get_all(self) -> list[Signal]:
        return list(self._signals)

    def get_by_id(self, signal_id: str) -> Optional[Signal]:
        return next((s for s in self._signals if s.id == signal_id), None)

    def patch(self, signal_id: str, fields: dict[str, Any]) -> Optional[Signal]:
        for i, record in enumerate(self._signals):
            if record.id == signal_id:
                self._signals[i] = _merge(record, fields)
                return self._signals[i]
        return None

    def delete(self, signal_id: str) -> None:
        self._signals = [s for s in self._signals if s.id != signal_id]

    def list_active(self) -> list[Signal]:
        return [s for s in self._signals if s.status in ACTIVE_STATUSES]

    def get_summary_ref(self) -> Optional[int]:
        return self._summary_ref

    def set_summary_ref(self, message_id: Optional[int]) -> None:
        self._summary_ref = message_id
