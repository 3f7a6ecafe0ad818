"""Domain tests for the title repair heuristic and topic catalog."""

import pytest

from sinopulse.domain.titles import (
    CATEGORY_MAP,
    TOPIC_CATALOG,
    has_cjk,
    localized_category,
    match_topic,
    repair_titles,
)

pytestmark = pytest.mark.unit


class TestMatchTopic:
    def test_exact_label_slug(self):
        topic, is_override = match_topic("sino-pulse/v1/en/internet_users.json")
        assert topic.label_en == "Internet Users"
        assert is_override is False

    def test_exact_preset_query(self):
        topic, is_override = match_topic("Annual CO2 emissions in billion tonnes from 1945 to 2023")
        assert topic.label_en == "CO2 Emissions"
        assert is_override is True

    def test_chinese_label_slug(self):
        topic, is_override = match_topic("sino-pulse/v1/zh/人均_gdp.json")
        assert topic.label_en == "GDP per Capita"
        assert is_override is True

    @pytest.mark.parametrize(
        "key",
        [
            "sino-pulse/v1/en/patent_grants_to_universities.json",
            "sino-pulse/v1/en/annual_patent_grants.json",
            "sino-pulse/v1/en/co2_per_capita.json",
            "sino-pulse/v1/en/gdp_and_disposable_income_per_capita.json",
            "sino-pulse/v1/en/steel_output.json",
        ],
    )
    def test_shared_fragment_is_not_a_match(self, key):
        assert match_topic(key) == (None, False)

    def test_every_preset_query_matches_itself(self):
        for topic in TOPIC_CATALOG:
            assert match_topic(topic.query)[0] == topic


class TestRepairTitles:
    def test_backfills_missing_local_title(self):
        result = repair_titles("sino-pulse/v1/zh/internet_users.json", "Internet users", None)
        assert result.title_en == "Internet users"
        assert result.title_zh == "互联网用户"
        assert result.repaired is True

    def test_replaces_ascii_local_title(self):
        result = repair_titles(
            "sino-pulse/v1/en/total_population_from_1945_to_2024.json",
            "Population",
            "Population",
        )
        assert result.title_en == "Population"
        assert result.title_zh == "人口增长"

    def test_replaces_english_title_in_wrong_script(self):
        result = repair_titles("sino-pulse/v1/zh/internet_users.json", "互联网", "中美互联网用户年度对比")
        assert result.title_en == "Internet Users"
        assert result.title_zh == "中美互联网用户年度对比"

    def test_keeps_correct_titles(self):
        result = repair_titles("sino-pulse/v1/zh/internet_users.json", "Sino-US Internet Users", "中美互联网用户年度对比")
        assert result.title_en == "Sino-US Internet Users"
        assert result.title_zh == "中美互联网用户年度对比"
        assert result.repaired is False

    def test_override_replaces_titles(self):
        result = repair_titles("sino-pulse/v1/en/patent_applications.json", "Sino-US Patent Grants", "")
        assert result.title_en == "Patent Applications"
        assert result.title_zh == "年度专利申请"
        assert result.repaired is True

    def test_override_topic_backfill_only(self):
        result = repair_titles(
            "sino-pulse/v1/en/patent_applications.json",
            "Sino-US Patent Applications Annual Comparison",
            "",
            allow_override=False,
        )
        assert result.title_en == "Sino-US Patent Applications Annual Comparison"
        assert result.title_zh == "年度专利申请"

    def test_unrelated_request_with_shared_fragment_passes_through(self):
        result = repair_titles("sino-pulse/v1/en/patent_grants_to_universities.json", "University Patent Grants", "")
        assert (result.title_en, result.title_zh, result.repaired) == ("University Patent Grants", "", False)

    def test_unknown_topic_passes_through(self):
        result = repair_titles("sino-pulse/v1/en/steel_output.json", "Steel Output", None)
        assert result.title_en == "Steel Output"
        assert result.title_zh == ""
        assert result.repaired is False

    def test_never_invents_titles(self):
        result = repair_titles("sino-pulse/v1/en/steel_output.json")
        assert (result.title_en, result.title_zh) == ("", "")


class TestHelpers:
    def test_has_cjk(self):
        assert has_cjk("人均 GDP")
        assert not has_cjk("GDP")
        assert not has_cjk(None)
        assert not has_cjk("")

    def test_localized_category(self):
        assert localized_category("Economy", "zh") == "经济"
        assert localized_category("Economy", "en") == "Economy"
        assert localized_category("Unlisted", "zh") == "Unlisted"

    def test_localized_category_without_locale(self):
        assert localized_category("Media", None) == "Media"

    @pytest.mark.parametrize("category", ["Tourism", "Labor", "Governance", "Media", "Science & Society"])
    def test_category_map_covers_all_categories(self, category):
        assert has_cjk(CATEGORY_MAP[category])
