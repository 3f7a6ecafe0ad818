"""Title repair for archived comparisons.

The generation backend is inconsistent about titles for the same well-known
topic: the Chinese title comes back in English, the English title comes back
in Chinese, or is missing entirely on legacy entries. This module backfills
titles from a small static catalog of known topics. It never invents titles:
a key only matches a topic when its slug is exactly one of the topic's
query or label slugs; anything else passes through unchanged.

For a matched topic:
- known problem topics (OVERRIDE_TOPICS) get both catalog titles, replacing
  whatever was stored, unless the caller asks for backfill only;
- other topics only get a missing or wrong-script title backfilled.
"""

import re
from dataclasses import dataclass

from sinopulse.storage.keys import normalize_request, slug_from_key

_CJK = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")


@dataclass(frozen=True)
class Topic:
    label_en: str
    label_zh: str
    category: str
    query: str


@dataclass(frozen=True)
class RepairedTitles:
    title_en: str
    title_zh: str
    repaired: bool = False


# Preset topics offered on the landing page
TOPIC_CATALOG: tuple[Topic, ...] = (
    Topic("GDP Growth (USD)", "GDP 增长 (美元)", "Economy", "GDP (Gross Domestic Product) in USD from 1945 to 2024"),
    Topic("GDP per Capita", "人均 GDP", "Economy", "GDP per capita in USD from 1945 to 2024"),
    Topic(
        "Disposable Income",
        "人均可支配收入",
        "Economy",
        "Annual Disposable Income per Capita in USD from 1945 to 2024",
    ),
    Topic("Population Growth", "人口增长", "Demographics", "Total Population from 1945 to 2024"),
    Topic("CO2 Emissions", "碳排放量", "Environment", "Annual CO2 emissions in billion tonnes from 1945 to 2023"),
    Topic("Military Spending", "军费开支", "Military", "Annual Military Expenditure in USD from 1945 to 2024"),
    Topic("Internet Users", "互联网用户", "Technology", "Number of Internet Users from 1945 to 2024"),
    Topic(
        "Renewable Energy Capacity",
        "可再生能源装机容量",
        "Environment",
        "Installed Renewable Energy Capacity (GW) from 1945 to 2024",
    ),
    Topic("Patent Applications", "年度专利申请", "Technology", "Annual Patent Applications filed from 1945 to 2023"),
)

# Presets whose stored titles were found wrong often enough that the catalog
# titles replace them outright
OVERRIDE_TOPICS: frozenset[str] = frozenset(
    {
        "Disposable Income",
        "GDP per Capita",
        "CO2 Emissions",
        "Military Spending",
        "Renewable Energy Capacity",
        "Patent Applications",
    }
)

CATEGORY_MAP: dict[str, str] = {
    "Economy": "经济",
    "Technology": "科技",
    "Demographics": "人口",
    "Military": "军事",
    "Environment": "环境",
    "Education": "教育",
    "Custom": "其他",
    "Culture": "文化",
    "Health": "健康",
    "Society": "社会",
    "Politics": "政治",
    "Infrastructure": "基建",
    "Diplomacy": "外交",
    "International Relations": "国际关系",
    "Science & Society": "科学与社会",
    "Tourism": "旅游",
    "Space": "航天",
    "Sports": "体育",
    "Entertainment": "娱乐",
    "Transportation": "交通",
    "Energy": "能源",
    "Agriculture": "农业",
    "Finance": "金融",
    "Manufacturing": "制造",
    "Labor": "劳动力",
    "Research": "科研",
    "History": "历史",
    "Geography": "地理",
    "Law": "法律",
    "Trade": "贸易",
    "Innovation": "创新",
    "Governance": "治理",
    "Media": "媒体",
}


def _topic_slugs(topic: Topic) -> set[str]:
    return {normalize_request(topic.query), normalize_request(topic.label_en), normalize_request(topic.label_zh)}


_EXACT_SLUGS: dict[str, Topic] = {slug: topic for topic in TOPIC_CATALOG for slug in _topic_slugs(topic)}


def has_cjk(text: str | None) -> bool:
    return bool(text) and _CJK.search(text) is not None


def localized_category(category: str, locale: str | None) -> str:
    """Display label for a category; Chinese for ``zh``, unchanged otherwise."""
    if locale == "zh":
        return CATEGORY_MAP.get(category, category)
    return category


def match_topic(filename_or_key: str) -> tuple[Topic | None, bool]:
    """Find the catalog topic for a key, filename or free-text request.

    Only exact slug matches count: "patent_applications" is the Patent
    Applications topic, "patent_grants_to_universities" is no topic at all.

    Returns:
        (topic, is_override); is_override is True for OVERRIDE_TOPICS.
    """
    topic = _EXACT_SLUGS.get(normalize_request(slug_from_key(filename_or_key)))
    if topic is None:
        return None, False
    return topic, topic.label_en in OVERRIDE_TOPICS


def repair_titles(
    filename_or_key: str,
    title_en: str | None = None,
    title_zh: str | None = None,
    allow_override: bool = True,
) -> RepairedTitles:
    """Backfill or correct display titles from the topic catalog.

    With allow_override=False an override topic is only backfilled, which is
    what fresh artifacts get: their titles come straight from the backend.
    """
    title_en = (title_en or "").strip()
    title_zh = (title_zh or "").strip()

    topic, is_override = match_topic(filename_or_key)
    if topic is None:
        return RepairedTitles(title_en=title_en, title_zh=title_zh)

    if is_override and allow_override:
        repaired = (title_en, title_zh) != (topic.label_en, topic.label_zh)
        return RepairedTitles(title_en=topic.label_en, title_zh=topic.label_zh, repaired=repaired)

    new_en, new_zh = title_en, title_zh
    if not new_en or has_cjk(new_en):
        new_en = topic.label_en
    if not new_zh or new_zh.isascii():
        new_zh = topic.label_zh
    return RepairedTitles(
        title_en=new_en,
        title_zh=new_zh,
        repaired=(new_en, new_zh) != (title_en, title_zh),
    )
