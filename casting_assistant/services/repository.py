import threading
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from casting_assistant.logging_config import get_logger
from casting_assistant.services.types import EscalationItem, Profile, split_tags

logger = get_logger("repository")


@dataclass(frozen=True)
class KnowledgeItem:
    item_id: str
    title: str
    summary: str = ""
    category: str = ""
    url: str = ""
    tags: tuple[str, ...] = ()
    priority: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KnowledgeItem":
        item_id = str(data.get("item_id") or data.get("id") or "").strip()
        if not item_id:
            raise ValueError("knowledge row has no item id")
        try:
            priority = int(data.get("priority") or 0)
        except (TypeError, ValueError):
            priority = 0
        return cls(
            item_id=item_id,
            title=str(data.get("title") or "").strip(),
            summary=str(data.get("summary") or "").strip(),
            category=str(data.get("category") or "").strip(),
            url=str(data.get("url") or "").strip(),
            tags=split_tags(data.get("tags")),
            priority=priority,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "title": self.title,
            "summary": self.summary,
            "category": self.category,
            "url": self.url,
            "tags": list(self.tags),
            "priority": self.priority,
        }


def _knowledge_score(item: KnowledgeItem, text: str, profile: Optional[Profile]) -> int:
    score = 0
    for tag in item.tags:
        tag_lower = tag.lower()
        if tag_lower in text:
            score += 3
        if profile and tag_lower in (interest.lower() for interest in profile.interest_tags):
            score += 1
    if item.title and item.title.lower() in text:
        score += 2
    if item.category and item.category.lower() in text:
        score += 1
    return score


class InMemoryRepository:
    """Profiles, knowledge items and recorded escalations for one process."""

    def __init__(self):
        self._profiles: dict[str, Profile] = {}
        self._knowledge: dict[str, KnowledgeItem] = {}
        self._escalations: list[EscalationItem] = []
        self._lock = threading.Lock()

    def upsert_profiles(self, rows: Iterable[dict[str, Any]]) -> dict[str, int]:
        upserted = 0
        skipped = 0
        profiles = []
        for row in rows:
            try:
                profiles.append(Profile.from_dict(row))
            except ValueError:
                skipped += 1
        with self._lock:
            for profile in profiles:
                self._profiles[profile.user_id] = profile
                upserted += 1
        if skipped:
            logger.warning(f"Skipped {skipped} profile rows without a user id")
        return {"upserted": upserted, "skipped": skipped}

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._lock:
            return self._profiles.get(user_id)

    def upsert_knowledge(self, rows: Iterable[dict[str, Any]]) -> dict[str, int]:
        items = []
        skipped = 0
        for row in rows:
            try:
                items.append(KnowledgeItem.from_dict(row))
            except ValueError:
                skipped += 1
        with self._lock:
            for item in items:
                self._knowledge[item.item_id] = item
        return {"upserted": len(items), "skipped": skipped}

    def search_knowledge(self, text: str, profile: Optional[Profile] = None, limit: int = 3) -> list[KnowledgeItem]:
        """Tag and title matches against the message, highest score then priority first."""
        lowered = (text or "").lower()
        with self._lock:
            items = list(self._knowledge.values())
        scored = [(_knowledge_score(item, lowered, profile), item) for item in items]
        ranked = sorted(
            ((score, item) for score, item in scored if score > 0),
            key=lambda pair: (pair[0], pair[1].priority),
            reverse=True,
        )
        return [item for _, item in ranked[:limit]]

    def add_escalation(self, item: EscalationItem) -> None:
        with self._lock:
            self._escalations.append(item)

    def list_escalations(self, limit: Optional[int] = None) -> list[EscalationItem]:
        with self._lock:
            items = list(self._escalations)
        if limit is not None:
            return items[-limit:] if limit > 0 else []
        return items
