import json
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from core.errors import PersistenceFailed


class MessageStore:
    """Durable chat history: one JSONL file per UTC day.

    Records are ``{"type": "user" | "assistant" | "error", ...}`` dicts.
    Opening the store is the only operation allowed to fail loudly; after
    that, reads and writes are best effort.
    """

    def __init__(self, messages_dir: Path):
        self.messages_dir = messages_dir

    def open(self) -> None:
        """Make sure the store is writable. Raises PersistenceFailed otherwise."""
        try:
            self.messages_dir.mkdir(parents=True, exist_ok=True)
            probe = self.messages_dir / ".write-probe"
            probe.write_text("ok")
            probe.unlink()
        except OSError as e:
            raise PersistenceFailed(f"Message store at {self.messages_dir} is not writable: {e}") from e
        logger.info("Message store ready at {}", self.messages_dir)

    async def append(self, record: dict) -> None:
        """Append one record, stamped with a UTC timestamp."""
        now = datetime.now(timezone.utc)
        entry = {"timestamp": now.isoformat(), **record}
        log_file = self.messages_dir / f"{now.strftime('%Y-%m-%d')}.jsonl"
        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error("Failed to store {} record: {}", record.get("type", "?"), e)

    async def query(self, username: str, limit: int = 5) -> list[dict]:
        """Most recent ``limit`` records from ``username``, oldest first."""
        found: list[dict] = []
        try:
            for log_file in sorted(self.messages_dir.glob("*.jsonl"), reverse=True):
                with open(log_file, encoding="utf-8") as f:
                    day = [r for r in self._parse(f) if r.get("username") == username]
                found = day + found
                if len(found) >= limit:
                    break
        except OSError as e:
            logger.error("Failed to read history for {}: {}", username, e)
            return []
        return found[-limit:]

    @staticmethod
    def _parse(lines) -> list[dict]:
        records = []
        for line in lines:
            try:
                records.append(json.loads(line.strip()))
            except json.JSONDecodeError:
                continue
        return records
