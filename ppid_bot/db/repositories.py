"""
Repositories over the flat JSON collections.

Single-writer assumption per file: every mutation in this process runs
under the store's lock; concurrent writers in other processes are not
coordinated.
"""
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from ppid_bot.core.config import settings
from ppid_bot.core.logging import get_logger
from ppid_bot.db.json_store import JsonFileStore
from ppid_bot.db.models import (
    ConversationSession,
    Evaluation,
    EvaluationStatus,
    KnowledgeGap,
    Recap,
    RuntimeSettings,
    SurveyResult,
)

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class JsonListRepository(Generic[ModelT]):
    """A JSON array of one pydantic model."""

    model: type[ModelT]

    def __init__(self, path: Path | str):
        self.store = JsonFileStore(path, default_factory=list)
        self._adapter = TypeAdapter(list[self.model])

    def _parse(self, raw: Any) -> list[ModelT]:
        if not isinstance(raw, list):
            logger.error(
                "Expected a JSON array, ignoring file content",
                extra_data={"path": str(self.store.path), "type": type(raw).__name__},
            )
            return []
        try:
            return self._adapter.validate_python(raw)
        except ValidationError:
            # Keep whatever rows still validate rather than dropping the collection
            rows: list[ModelT] = []
            for item in raw:
                try:
                    rows.append(self.model.model_validate(item))
                except ValidationError as exc:
                    logger.warning(
                        "Skipping malformed record",
                        extra_data={"path": str(self.store.path), "error": str(exc)},
                    )
            return rows

    async def _load_unlocked(self) -> list[ModelT]:
        return self._parse(await self.store.read())

    async def _save_unlocked(self, rows: list[ModelT]) -> None:
        await self.store.write([row.model_dump(mode="json") for row in rows])

    async def list_all(self) -> list[ModelT]:
        async with self.store.lock:
            return await self._load_unlocked()


class SurveyResultRepository(JsonListRepository[SurveyResult]):
    model = SurveyResult

    async def append(self, result: SurveyResult) -> None:
        async with self.store.lock:
            rows = await self._load_unlocked()
            rows.append(result)
            await self._save_unlocked(rows)


class EvaluationRepository(JsonListRepository[Evaluation]):
    model = Evaluation

    async def add(self, evaluation: Evaluation) -> None:
        async with self.store.lock:
            rows = await self._load_unlocked()
            rows.append(evaluation)
            await self._save_unlocked(rows)

    async def set_status(self, evaluation_id: str, status: EvaluationStatus) -> bool:
        async with self.store.lock:
            rows = await self._load_unlocked()
            for row in rows:
                if row.id == evaluation_id:
                    row.status = status
                    await self._save_unlocked(rows)
                    return True
            return False


class KnowledgeGapRepository(JsonListRepository[KnowledgeGap]):
    model = KnowledgeGap

    async def add_if_absent(self, gap: KnowledgeGap) -> bool:
        """Insert unless the exact question text is already recorded."""
        async with self.store.lock:
            rows = await self._load_unlocked()
            if any(row.question == gap.question for row in rows):
                return False
            rows.append(gap)
            await self._save_unlocked(rows)
            return True

    async def remove(self, question: str) -> bool:
        async with self.store.lock:
            rows = await self._load_unlocked()
            remaining = [row for row in rows if row.question != question]
            if len(remaining) == len(rows):
                return False
            await self._save_unlocked(remaining)
            return True


class RecapRepository(JsonListRepository[Recap]):
    """Newest first, capped at ``max_entries`` (oldest dropped)."""

    model = Recap

    def __init__(self, path: Path | str, max_entries: int):
        super().__init__(path)
        self.max_entries = max_entries

    async def add(self, recap: Recap) -> None:
        async with self.store.lock:
            rows = await self._load_unlocked()
            rows.insert(0, recap)
            dropped = len(rows) - self.max_entries
            if dropped > 0:
                del rows[self.max_entries:]
                logger.info(
                    "Recap cap reached, dropped oldest entries",
                    extra_data={"dropped": dropped, "max_entries": self.max_entries},
                )
            await self._save_unlocked(rows)


class SessionSnapshotRepository(JsonListRepository[ConversationSession]):
    model = ConversationSession

    async def replace_all(self, sessions: list[ConversationSession]) -> None:
        async with self.store.lock:
            await self._save_unlocked(sessions)


class SettingsRepository:
    """settings.json: a single object, merged over defaults on load."""

    def __init__(self, path: Path | str):
        self.store = JsonFileStore(path, default_factory=dict)

    async def load(self) -> RuntimeSettings:
        async with self.store.lock:
            raw = await self.store.read()
        if not isinstance(raw, dict):
            return RuntimeSettings()
        try:
            return RuntimeSettings().merged(raw)
        except ValidationError as exc:
            logger.error(
                "Invalid settings file, using defaults",
                extra_data={"path": str(self.store.path), "error": str(exc)},
            )
            return RuntimeSettings()

    async def save(self, runtime_settings: RuntimeSettings) -> None:
        async with self.store.lock:
            await self.store.write(runtime_settings.model_dump(mode="json"))


class Repositories:
    """All persisted collections under one data directory."""

    def __init__(self, data_path: Path | str | None = None, recap_max_entries: int | None = None):
        base = Path(data_path or settings.DATA_PATH)
        self.data_path = base
        self.surveys = SurveyResultRepository(base / "survey_results.json")
        self.evaluations = EvaluationRepository(base / "evaluations.json")
        self.knowledge_gaps = KnowledgeGapRepository(base / "knowledge_gaps.json")
        self.recaps = RecapRepository(
            base / "recaps.json",
            max_entries=recap_max_entries or settings.RECAP_MAX_ENTRIES,
        )
        self.settings = SettingsRepository(base / "settings.json")
        self.sessions = SessionSnapshotRepository(base / "sessions.json")
