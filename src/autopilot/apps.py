"""Installed-app index with fuzzy name lookup."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

_CLEAN = re.compile(r"[^a-z0-9]")

CATEGORY_KEYWORDS: Dict[str, Sequence[str]] = {
    "Social": ("WeChat", "QQ", "Telegram", "WhatsApp", "Line", "Weibo", "Messenger", "Signal"),
    "Shopping": ("Taobao", "JD", "Pinduoduo", "Amazon", "eBay", "Xianyu", "Temu"),
    "Food": ("Meituan", "Ele.me", "KFC", "McDonald's", "Starbucks", "DoorDash", "Uber Eats"),
    "Travel": ("DiDi", "Uber", "Lyft", "Booking", "Airbnb"),
    "Map": ("Amap", "Baidu Map", "Google Maps", "Maps", "Waze"),
    "Music": ("NetEase", "QQ Music", "Spotify", "Apple Music", "SoundCloud"),
    "Video": ("TikTok", "Kuaishou", "Bilibili", "YouTube", "Netflix", "Disney+"),
    "Payment": ("Alipay", "PayPal", "Venmo", "Cash App"),
    "Notes": ("Evernote", "Notion", "Memo", "Notes", "OneNote", "Keep"),
    "Camera": ("Camera",),
    "Photos": ("Photos", "Gallery", "Album"),
    "Browser": ("Chrome", "Firefox", "Edge", "Browser", "Brave", "Opera"),
    "Office": ("WPS", "Office", "Slack", "Teams", "Zoom", "Docs", "Sheets"),
    "AI": ("ChatGPT", "Claude", "Doubao", "Copilot", "Gemini"),
    "Tools": ("Calculator", "Clock", "Alarm", "Calendar", "Weather", "Files"),
    "Reading": ("Kindle", "Books", "Audible", "Zhihu"),
    "Games": ("Game", "Roblox", "Minecraft", "Genshin"),
}

KEYWORD_MAP: Dict[str, str] = {
    "weixin": "WeChat",
    "wechat": "WeChat",
    "wx": "WeChat",
    "taobao": "Taobao",
    "jingdong": "JD",
    "pdd": "Pinduoduo",
    "alipay": "Alipay",
    "zfb": "Alipay",
    "douyin": "TikTok",
    "tiktok": "TikTok",
    "youtube": "YouTube",
    "gaode": "Amap",
    "googlemap": "Google Maps",
    "settings": "Settings",
    "camera": "Camera",
    "photos": "Photos",
    "gallery": "Gallery",
    "dialer": "Phone",
    "phone": "Phone",
    "sms": "Messages",
    "message": "Messages",
    "chrome": "Chrome",
    "browser": "Browser",
    "calculator": "Calculator",
    "clock": "Clock",
    "alarm": "Clock",
    "calendar": "Calendar",
    "weather": "Weather",
    "file": "Files",
}

SEMANTIC_MAP: Dict[str, str] = {
    "take photo": "Camera",
    "selfie": "Camera",
    "view photos": "Photos",
    "pictures": "Photos",
    "chat": "Social",
    "shop": "Shopping",
    "buy": "Shopping",
    "takeout": "Food",
    "delivery": "Food",
    "taxi": "Travel",
    "ride": "Travel",
    "navigate": "Map",
    "directions": "Map",
    "listen": "Music",
    "song": "Music",
    "watch": "Video",
    "movie": "Video",
    "pay": "Payment",
    "note": "Notes",
    "memo": "Notes",
    "browse": "Browser",
    "web": "Browser",
    "document": "Office",
    "assistant": "AI",
    "book": "Reading",
    "game": "Games",
}


def normalize_name(text: str) -> str:
    return _CLEAN.sub("", text.lower())


def detect_category(name: str, package: str) -> Optional[str]:
    lower_name = name.lower()
    lower_package = package.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        for keyword in keywords:
            token = keyword.lower()
            if token in lower_name or token in lower_package:
                return category
    return None


def generate_keywords(name: str, package: str, category: Optional[str]) -> List[str]:
    keywords = [part for part in package.split(".") if len(part) > 2]
    if category:
        keywords.append(category)
    lowered = name.lower()
    keywords.extend(key for key, mapped in KEYWORD_MAP.items() if mapped.lower() in lowered)
    return list(dict.fromkeys(keywords))


class AppInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package: str
    name: str
    normalized: str = ""
    category: Optional[str] = None
    is_system: bool = Field(default=False, alias="system")
    keywords: List[str] = Field(default_factory=list)

    @classmethod
    def build(cls, package: str, name: str, is_system: bool = False) -> "AppInfo":
        category = detect_category(name, package)
        return cls(
            package=package,
            name=name,
            normalized=normalize_name(name),
            category=category,
            is_system=is_system,
            keywords=generate_keywords(name, package, category),
        )


@dataclass
class SearchResult:
    app: AppInfo
    score: float
    match_type: str


class AppIndex:
    """Snapshot of installed apps, searchable by name, keyword or intent."""

    def __init__(self, apps: Iterable[AppInfo] = ()) -> None:
        self.apps: List[AppInfo] = sorted(apps, key=lambda app: app.name.lower())

    @classmethod
    def from_entries(cls, entries: Iterable[Tuple[str, str, bool]]) -> "AppIndex":
        """Build from ``(package, label, is_system)`` tuples reported by a device."""
        return cls(AppInfo.build(package, name, is_system) for package, name, is_system in entries)

    @classmethod
    def load(cls, path: Path) -> "AppIndex":
        if not path.exists():
            return cls()
        try:
            records = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"App cache is not valid JSON: {path}") from exc
        if not isinstance(records, list):
            raise ValueError(f"App cache must hold a list: {path}")
        apps: List[AppInfo] = []
        for record in records:
            try:
                app = AppInfo.model_validate(record)
            except ValidationError:
                logger.debug("Skipping malformed app record: %s", record)
                continue
            if not app.normalized:
                app = AppInfo.build(app.package, app.name, app.is_system)
            apps.append(app)
        logger.info("Loaded %s apps from %s", len(apps), path)
        return cls(apps)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = [app.model_dump(by_alias=True) for app in self.apps]
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("Cached %s apps to %s", len(self.apps), path)

    def __len__(self) -> int:
        return len(self.apps)

    def search(self, query: str, top_k: int = 5, include_system: bool = True) -> List[SearchResult]:
        lower_query = query.lower().strip()
        if not lower_query:
            return []
        normalized_query = normalize_name(query)
        keyword_mapped = KEYWORD_MAP.get(lower_query)
        semantic_category = SEMANTIC_MAP.get(lower_query)
        results: List[SearchResult] = []

        for app in self.apps:
            if app.is_system and not include_system:
                continue
            lower_name = app.name.lower()
            if lower_name == lower_query:
                score, match_type = 1.0, "exact"
            elif keyword_mapped and keyword_mapped.lower() in lower_name:
                score, match_type = 0.95, "keyword_mapped"
            elif lower_query in lower_name:
                score, match_type = 0.9, "contains"
            elif normalized_query and normalized_query in app.normalized:
                score, match_type = 0.8, "normalized"
            elif any(lower_query in kw.lower() or kw.lower() in lower_query for kw in app.keywords):
                score, match_type = 0.7, "keyword"
            elif semantic_category and app.category == semantic_category:
                score, match_type = 0.6, "semantic"
            elif lower_query in app.package.lower():
                score, match_type = 0.5, "package"
            else:
                continue
            if not app.is_system:
                score += 0.05
            results.append(SearchResult(app=app, score=min(score, 1.0), match_type=match_type))

        results.sort(key=lambda result: result.score, reverse=True)
        return results[:top_k]

    def find_package(self, name: str) -> Optional[str]:
        results = self.search(name, top_k=1)
        return results[0].app.package if results else None

    def installed_app_names(self, limit: int = 50) -> List[str]:
        return [app.name for app in self.apps if not app.is_system][:limit]

    def is_installed(self, package: str) -> bool:
        return any(app.package == package for app in self.apps)

    @staticmethod
    def format_results(results: Sequence[SearchResult]) -> str:
        if not results:
            return "No matching apps found"
        lines = ["Found the following apps, please select the most appropriate one:"]
        for idx, result in enumerate(results, start=1):
            category = f" [{result.app.category}]" if result.app.category else ""
            lines.append(f"{idx}. {result.app.name}{category} ({result.app.package})")
        return "\n".join(lines)


__all__ = ["AppIndex", "AppInfo", "SearchResult", "normalize_name"]
