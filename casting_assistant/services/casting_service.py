"""Talent, contract and expert lookups over CSV tables held in memory.

The tables are read once at construction and replaced wholesale by
``reload()``. Nothing is read lazily, so a lookup never touches the disk.
"""

import csv
import math
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional

from casting_assistant.logging_config import get_logger

logger = get_logger("casting_service")

Row = dict[str, str]

RISK_HIGH = "高"
RISK_MEDIUM = "中"
RISK_LOW = "低"
RISK_LABELS_EN = {RISK_HIGH: "High", RISK_MEDIUM: "Medium", RISK_LOW: "Low"}
RISK_EMOJI = {RISK_HIGH: "🔴", RISK_MEDIUM: "🟡"}

FULL_EXCLUSIVITY = "完全独占"
NO_RESTRICTION = "なし"
NOT_FOUND_REASON = "タレントが見つかりませんでした / Talent not found"

ALCOHOL_KEYWORDS = ("beer", "ビール", "alcohol", "酒", "wine", "ワイン", "whisky", "ウイスキー")

CATEGORY_KEYWORDS = {
    "beer": "ビール",
    "ビール": "ビール",
    "alcohol": "酒類",
    "酒": "酒類",
    "car": "自動車",
    "自動車": "自動車",
    "cosmetics": "化粧品",
    "化粧品": "化粧品",
    "fashion": "ファッション",
    "sports": "スポーツ",
}

# English search terms that should also match Japanese expert specializations.
SPECIALIZATION_TERMS = {
    "korean": "韓国",
    "kpop": "k-pop",
    "k-pop": "k-pop",
    "fashion": "ファッション",
    "model": "モデル",
    "sports": "スポーツ",
    "athlete": "アスリート",
    "scandal": "スキャンダル",
    "crisis": "危機管理",
    "risk": "リスク",
    "actor": "俳優",
    "actress": "女優",
    "idol": "アイドル",
    "contract": "契約",
    "legal": "法務",
    "rights": "権利",
}

TALENT_NAME_PATTERNS_JA = (
    re.compile(r"(.+?)(?:さん)?(?:は|の|を|が)"),
    re.compile(r"(.+?)(?:について|のリスク|の契約|使える|使えますか)"),
)
TALENT_NAME_PATTERNS_EN = (
    re.compile(r"^(?:can|is|does)\s+(.+?)\s+(?:do|available|work|have)", re.IGNORECASE),
    re.compile(r"^(.+?)\s+(?:risk|contract|available|scandal|beer|ad|commercial)", re.IGNORECASE),
    re.compile(r"^(.+?)\s+(?:for|can)", re.IGNORECASE),
)
NAME_PREFIX_PATTERN = re.compile(r"^(?:what's|what is|check|show|tell me about)\s*", re.IGNORECASE)

SPECIALIZATION_PATTERNS = (
    re.compile(r"(.+?)(?:に詳しい|の専門|担当|について)"),
    re.compile(r"(.+?)(?:タレント|アーティスト|の専門家)"),
    re.compile(r"(.+?)\s+(?:expert|specialist|team|contact)", re.IGNORECASE),
    re.compile(r"(?:who knows|find|expert for|specialist in)\s+(.+)", re.IGNORECASE),
)


def load_csv(path: Path) -> list[Row]:
    """Read a headered CSV into stripped string rows. A missing file is an empty table."""
    if not path.exists():
        logger.warning(f"CSV not found, using empty table: {path}")
        return []
    with path.open(encoding="utf-8", newline="") as fh:
        reader = csv.DictReader(fh)
        return [
            {(key or "").strip(): (value or "").strip() for key, value in row.items()}
            for row in reader
        ]


def split_pipe(value: str) -> list[str]:
    return [item.strip() for item in (value or "").split("|") if item.strip()]


def bilingual_name(name: str, name_en: str = "") -> str:
    return f"{name} ({name_en})" if name_en else name


def extract_talent_name(text: str) -> str:
    query = text.strip()
    for pattern in TALENT_NAME_PATTERNS_JA:
        match = pattern.search(query)
        if match and len(match.group(1).strip()) > 1:
            return match.group(1).strip()

    for pattern in TALENT_NAME_PATTERNS_EN:
        match = pattern.search(query)
        if match and len(match.group(1).strip()) > 1:
            name = NAME_PREFIX_PATTERN.sub("", match.group(1).strip())
            if len(name) > 1:
                return name

    words = query.split()
    if not words:
        return ""
    if len(words) >= 2 and words[0][:1].isupper() and words[1][:1].isupper():
        return f"{words[0]} {words[1]}"
    return words[0]


def extract_category(text: str) -> Optional[str]:
    lowered = text.lower()
    for keyword, category in CATEGORY_KEYWORDS.items():
        if keyword in lowered:
            return category
    return None


def extract_specialization(text: str) -> str:
    query = text.strip()
    for pattern in SPECIALIZATION_PATTERNS:
        match = pattern.search(query)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return query


def _overlaps(left: str, right: str) -> bool:
    left, right = left.lower(), right.lower()
    return bool(left and right) and (left in right or right in left)


@dataclass(frozen=True)
class AvailabilityResult:
    available: Optional[bool]
    reason: str
    talent: Optional[Row] = None
    ng_brands: list[str] = field(default_factory=list)
    ng_categories: list[str] = field(default_factory=list)
    conflicting_contract: Optional[Row] = None
    cautions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ContractAlert:
    kind: str  # expiring_contract | high_risk_talent
    urgency: str  # critical | high | normal
    talent: Row
    contract: Optional[Row] = None
    days_until_expiry: Optional[int] = None
    active_contracts: int = 0


URGENCY_ORDER = {"critical": 0, "high": 1, "normal": 2}


def urgency_for(days_until_expiry: int) -> str:
    if days_until_expiry <= 7:
        return "critical"
    if days_until_expiry <= 14:
        return "high"
    return "normal"


class CastingCatalog:
    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.talents: list[Row] = []
        self.contracts: list[Row] = []
        self.experts: list[Row] = []
        self._contracts_by_talent: dict[str, list[Row]] = {}
        self.reload()

    def reload(self) -> dict[str, int]:
        talents = load_csv(self.data_dir / "talents.csv")
        contracts = load_csv(self.data_dir / "contracts.csv")
        experts = load_csv(self.data_dir / "experts.csv")

        by_talent: dict[str, list[Row]] = {}
        for contract in contracts:
            by_talent.setdefault(contract.get("talent_name", ""), []).append(contract)

        self.talents, self.contracts, self.experts = talents, contracts, experts
        self._contracts_by_talent = by_talent

        counts = {"talents": len(talents), "contracts": len(contracts), "experts": len(experts)}
        logger.info("Casting catalog loaded", extra={"context": {"data_dir": str(self.data_dir), **counts}})
        return counts

    def contracts_for(self, talent: Row) -> list[Row]:
        return list(self._contracts_by_talent.get(talent.get("name", ""), []))

    def find_talent(self, name: str) -> Optional[Row]:
        """Exact name, then substring either way, then any shared name part."""
        query = (name or "").strip().lower()
        if not query:
            return None

        for talent in self.talents:
            if query in (talent.get("name", "").lower(), talent.get("name_en", "").lower()):
                return talent

        for talent in self.talents:
            ja = talent.get("name", "").lower()
            en = talent.get("name_en", "").lower()
            if _overlaps(query, ja) or _overlaps(query, en):
                return talent

        parts = query.split()
        for talent in self.talents:
            ja = talent.get("name", "").lower()
            en_parts = talent.get("name_en", "").lower().split()
            for part in parts:
                if part in ja or any(_overlaps(part, en_part) for en_part in en_parts):
                    return talent
        return None

    def check_availability(
        self,
        name: str,
        brand: Optional[str] = None,
        category: Optional[str] = None,
    ) -> AvailabilityResult:
        talent = self.find_talent(name)
        if talent is None:
            return AvailabilityResult(available=None, reason=NOT_FOUND_REASON)

        ng_brands = split_pipe(talent.get("ng_brands", ""))
        ng_categories = split_pipe(talent.get("ng_categories", ""))

        brand_conflict = any(_overlaps(brand or "", ng) for ng in ng_brands)
        category_conflict = any(_overlaps(category or "", ng) for ng in ng_categories)
        alcohol_query = any(
            keyword in (brand or "").lower() or keyword in (category or "").lower() for keyword in ALCOHOL_KEYWORDS
        )
        alcohol_ng = any("酒" in ng for ng in ng_categories)

        if brand_conflict or category_conflict or (alcohol_query and alcohol_ng):
            reason = (
                f"{brand} is an NG brand / {brand}はNGブランドに該当します"
                if brand_conflict
                else "This category is restricted / このカテゴリはNGです"
            )
            return AvailabilityResult(
                available=False,
                reason=reason,
                talent=talent,
                ng_brands=ng_brands,
                ng_categories=ng_categories,
            )

        terms = [term.lower() for term in (brand, category) if term]
        for contract in self.contracts_for(talent):
            restrictions = contract.get("competitive_restrictions", "").lower()
            if any(term in restrictions for term in terms):
                client = contract.get("client_name", "")
                return AvailabilityResult(
                    available=False,
                    reason=f"Conflict with existing contract ({client}) / 既存契約との競合抵触があります",
                    talent=talent,
                    conflicting_contract=contract,
                )

        history = talent.get("scandal_history", "")
        return AvailabilityResult(
            available=True,
            reason="Available for casting / 起用可能です",
            talent=talent,
            cautions=[history] if history and history != NO_RESTRICTION else [],
        )

    def scandal_risk(self, name: str) -> dict[str, Any]:
        talent = self.find_talent(name)
        if talent is None:
            return {"found": False, "reason": NOT_FOUND_REASON}

        level = talent.get("risk_level", "")
        if level == RISK_HIGH:
            recommendation = "Consult Risk Management before casting / 起用前にリスク管理部への相談を推奨します"
        elif level == RISK_MEDIUM:
            recommendation = "Caution needed depending on project / 案件内容によっては注意が必要です"
        else:
            recommendation = "No concerns / 特に懸念事項はありません"

        return {
            "found": True,
            "talent": talent,
            "risk_level": level,
            "risk_level_en": RISK_LABELS_EN.get(level, level),
            "recommendation": recommendation,
        }

    def contract_status(self, name: str) -> dict[str, Any]:
        talent = self.find_talent(name)
        if talent is None:
            return {"found": False, "reason": NOT_FOUND_REASON}
        return {"found": True, "talent": talent, "contracts": self.contracts_for(talent)}

    def find_experts(self, specialization: str) -> list[Row]:
        query = (specialization or "").strip().lower()
        if not query:
            return []
        terms = {query}
        for english, japanese in SPECIALIZATION_TERMS.items():
            if english in query:
                terms.add(japanese.lower())

        matches = []
        for expert in self.experts:
            haystacks = [
                expert.get(key, "").lower()
                for key in ("specialization", "specialization_en", "department", "name", "name_en")
            ]
            if any(term in haystack for term in terms for haystack in haystacks if haystack):
                matches.append(expert)
        return matches

    def check_conflicts(self, name: str, proposed_client: Optional[str] = None) -> dict[str, Any]:
        talent = self.find_talent(name)
        if talent is None:
            return {"found": False, "reason": NOT_FOUND_REASON}

        active = self.contracts_for(talent)
        conflicts = []
        for contract in active:
            restrictions = contract.get("competitive_restrictions", "")
            if contract.get("exclusivity_type") == FULL_EXCLUSIVITY:
                conflicts.append(contract)
            elif proposed_client and restrictions and restrictions != NO_RESTRICTION:
                conflicts.append(contract)

        return {"found": True, "talent": talent, "active_contracts": active, "conflicts": conflicts}

    def expiring_contracts(self, days: int, today: Optional[date] = None) -> list[ContractAlert]:
        today = today or date.today()
        alerts = []
        for contract in self.contracts:
            try:
                end_date = date.fromisoformat(contract.get("end_date", ""))
            except ValueError:
                continue
            remaining = (end_date - today).days
            if 0 <= remaining <= days:
                talent = self.find_talent(contract.get("talent_name", "")) or {
                    "name": contract.get("talent_name", ""),
                    "name_en": contract.get("talent_name_en", ""),
                }
                alerts.append(
                    ContractAlert(
                        kind="expiring_contract",
                        urgency=urgency_for(remaining),
                        talent=talent,
                        contract=contract,
                        days_until_expiry=remaining,
                    )
                )
        return sorted(alerts, key=lambda alert: alert.days_until_expiry)

    def contract_alerts(self, days: int, today: Optional[date] = None) -> list[ContractAlert]:
        """Expiring contracts plus high-risk talents that still hold contracts, most urgent first."""
        alerts = self.expiring_contracts(days, today)
        for talent in self.talents:
            if talent.get("risk_level") != RISK_HIGH:
                continue
            active = self.contracts_for(talent)
            if active:
                alerts.append(
                    ContractAlert(kind="high_risk_talent", urgency="high", talent=talent, active_contracts=len(active))
                )
        return sorted(
            alerts,
            key=lambda alert: (URGENCY_ORDER.get(alert.urgency, 2), alert.days_until_expiry or math.inf),
        )


def _talent_label(talent: Row) -> str:
    return bilingual_name(talent.get("name", ""), talent.get("name_en", ""))


def format_availability(result: AvailabilityResult) -> str:
    if result.available is None or result.talent is None:
        return f"❓ {result.reason}"

    talent = result.talent
    label = _talent_label(talent)
    name = talent.get("name", "")

    if result.available:
        lines = [f"✅ {label} is available for casting!", f"✅ {name}さんは起用可能です"]
        if result.cautions:
            lines.append("")
            lines.append("⚠️ Caution / 注意事項:")
            lines.extend(f"・{caution}" for caution in result.cautions)
        contact = talent.get("expert_contact", "")
        if contact:
            lines.append("")
            lines.append(f"💡 Contact {contact} for details")
            lines.append(f"💡 詳細は{contact}さんにご相談ください")
        return "\n".join(lines)

    lines = [
        f"❌ {label} cannot be used for this project",
        f"❌ {name}さんは現在起用できません",
        "",
        "📋 Reason / 理由:",
        f"・{result.reason}",
    ]
    if result.ng_brands:
        lines.append("")
        lines.append(f"🚫 NG Brands / NGブランド: {', '.join(result.ng_brands)}")
    if result.ng_categories:
        lines.append(f"🚫 NG Categories / NGカテゴリ: {', '.join(result.ng_categories)}")
    return "\n".join(lines)


def format_risk(result: dict[str, Any]) -> str:
    if not result["found"]:
        return f"❓ {result['reason']}"

    talent = result["talent"]
    level = result["risk_level"]
    return "\n".join(
        [
            f"🔍 Risk Assessment for {_talent_label(talent)}",
            f"🔍 {talent.get('name', '')}さんのリスク評価",
            "",
            f"📊 Overall Risk / 総合評価: {RISK_EMOJI.get(level, '🟢')} {result['risk_level_en']} / {level}リスク",
            "",
            "📰 History / 過去の問題:",
            f"・{talent.get('scandal_history', '')}",
            "",
            "💡 Recommendation / 推奨:",
            result["recommendation"],
            "",
            f"📞 Contact / 担当: {talent.get('expert_contact', '')} ({talent.get('expert_department', '')})",
        ]
    )


def format_contract_status(result: dict[str, Any]) -> str:
    if not result["found"]:
        return f"❓ {result['reason']}"

    talent = result["talent"]
    label = _talent_label(talent)
    name = talent.get("name", "")
    if not result["contracts"]:
        return f"📄 {label} has no active contracts\n📄 {name}さんには現在有効な契約がありません"

    entries = [
        f"・{c.get('client_name', '')} ({c.get('brand', '')})\n"
        f"  📅 {c.get('start_date', '')} → {c.get('end_date', '')}\n"
        f"  📋 {c.get('renewal_status', '')}"
        for c in result["contracts"]
    ]
    return (
        f"📄 Contract Status for {label}\n📄 {name}さんの契約状況\n\n"
        + "\n\n".join(entries)
        + f"\n\n💡 Contact / 担当: {talent.get('expert_contact', '')}"
    )


def format_experts(experts: list[Row], specialization: str) -> str:
    if not experts:
        return (
            f'❓ No expert found for "{specialization}"\n'
            f"❓ 「{specialization}」の専門家が見つかりませんでした"
        )

    entries = []
    for expert in experts:
        specialty = expert.get("specialization", "")
        if expert.get("specialization_en"):
            specialty = f"{specialty} / {expert['specialization_en']}"
        entries.append(
            f"・{bilingual_name(expert.get('name', ''), expert.get('name_en', ''))}\n"
            f"  📂 {expert.get('department', '')}\n"
            f"  🎯 {specialty}\n"
            f"  📧 {expert.get('contact_info', '')}"
        )
    return (
        f"🎯 Experts for {specialization}\n🎯 {specialization}の専門チーム\n\n"
        "Best contacts / 最適な相談相手:\n\n" + "\n\n".join(entries)
    )


def format_conflicts(result: dict[str, Any]) -> str:
    if not result["found"]:
        return f"❓ {result['reason']}"

    talent = result["talent"]
    label = _talent_label(talent)
    name = talent.get("name", "")
    if not result["conflicts"]:
        return (
            f"✅ {label} has no conflicts\n✅ {name}さんには競合抵触はありません\n\n"
            f"📄 Active contracts: {len(result['active_contracts'])}"
        )

    entries = "\n".join(
        f"・{c.get('client_name', '')} ({c.get('brand', '')}) - {c.get('exclusivity_type', '')}"
        for c in result["conflicts"]
    )
    return f"⚠️ {label} has conflicts!\n⚠️ {name}さんに競合抵触があります\n\n📋 Conflicting contracts:\n{entries}"


ALERT_URGENCY_LABELS = {"critical": ("🔴", "CRITICAL"), "high": ("🟡", "URGENT"), "normal": ("🟢", "NORMAL")}
ALERT_RULE = "━" * 30


def format_alerts(alerts: list[ContractAlert]) -> str:
    if not alerts:
        return "✅ No alerts at this time\n✅ 現在アラートはありません"

    expiring = [alert for alert in alerts if alert.kind == "expiring_contract"]
    risky = [alert for alert in alerts if alert.kind == "high_risk_talent"]

    lines = ["⚠️ CONTRACT ALERTS / 契約アラート一覧", ALERT_RULE]
    if expiring:
        lines.append("")
        lines.append("📅 EXPIRING CONTRACTS / 期限切れ間近の契約:")
        for alert in expiring:
            emoji, label = ALERT_URGENCY_LABELS[alert.urgency]
            contract = alert.contract or {}
            lines.extend(
                [
                    "",
                    f"{emoji} {label} - {_talent_label(alert.talent)}",
                    f"   📋 Client: {contract.get('client_name', '')} ({contract.get('brand', '')})",
                    f"   ⏰ {alert.days_until_expiry} days left / 残り{alert.days_until_expiry}日 ({contract.get('end_date', '')})",
                    f"   📊 Status: {contract.get('renewal_status', '')}",
                    f"   👤 Manager: {contract.get('assigned_manager', '')}",
                ]
            )
    if risky:
        lines.append("")
        lines.append("🔍 HIGH-RISK TALENTS / 要注意タレント:")
        for alert in risky:
            lines.extend(
                [
                    "",
                    f"🔴 {_talent_label(alert.talent)}",
                    "   ⚠️ Risk Level: HIGH / リスク: 高",
                    f"   📰 History: {alert.talent.get('scandal_history', '')}",
                    f"   📄 Active Contracts: {alert.active_contracts}",
                    f"   📞 Contact: {alert.talent.get('expert_contact', '')}",
                ]
            )

    lines.append("")
    lines.append(ALERT_RULE)
    lines.append(f"📊 Total Alerts: {len(alerts)} ({len(expiring)} contracts, {len(risky)} risk)")
    lines.append(f"📊 アラート合計: {len(alerts)}件")
    return "\n".join(lines)
