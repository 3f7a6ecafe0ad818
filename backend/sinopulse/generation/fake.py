"""GenerationFake: scenario-based test double for the GenerationBackend protocol.

Scenarios:
- happy_path: well-formed bilingual comparison document
- llm_failure: backend rate limit, raises GenerationError
- malformed: document with no samples and string values

All scenarios return instantly with deterministic content.
"""

from sinopulse.core.exceptions import GenerationError

FAKE_YEARS = range(2015, 2025)


class GenerationFake:
    """Deterministic GenerationBackend for tests and local development."""

    VALID_SCENARIOS = {"happy_path", "llm_failure", "malformed"}

    def __init__(self, scenario: str = "happy_path"):
        """Initialize with a named scenario.

        Raises:
            ValueError: If scenario is not recognized
        """
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}")
        self.scenario = scenario
        self.calls: list[tuple[str, str]] = []

    async def generate(self, request_text: str, locale: str) -> dict:
        self.calls.append((request_text, locale))

        if self.scenario == "llm_failure":
            raise GenerationError(
                "Generation backend rate limit exceeded. Retry after 60 seconds.",
                status_code=429,
                code="rate_limited",
            )

        if self.scenario == "malformed":
            return {
                "title": request_text,
                "titleEn": request_text,
                "yAxisLabel": "USD",
                "data": [{"year": "2020", "usa": "n/a", "china": "n/a"}, {"year": "twenty", "usa": 1, "china": 2}],
                "summary": "",
                "detailedAnalysis": "",
                "futureOutlook": "",
                "sources": [],
            }

        return self._document(request_text, locale)

    @staticmethod
    def _document(request_text: str, locale: str) -> dict:
        title_en = f"Sino-US {request_text} Annual Comparison"
        title_zh = f"中美{request_text}年度对比"
        return {
            "title": title_zh if locale == "zh" else title_en,
            "titleEn": title_en,
            "titleZh": title_zh,
            "category": "Economy",
            "yAxisLabel": "USD",
            "data": [
                {"year": str(year), "usa": 100.0 + i * 3.5, "china": 40.0 + i * 6.0}
                for i, year in enumerate(FAKE_YEARS)
            ],
            "summary": f"The United States led on {request_text} across the period while China narrowed the gap.",
            "detailedAnalysis": (
                "### 2015-2019: Steady growth\n\n- Both economies expanded.\n\n"
                "### 2020-2024: Convergence\n\n- China's growth rate exceeded the US rate."
            ),
            "futureOutlook": "The gap is expected to keep narrowing through the next decade.",
            "sources": [
                {"title": "World Bank Open Data", "url": "https://data.worldbank.org"},
                {"title": "IMF World Economic Outlook", "url": "https://www.imf.org/en/Publications/WEO"},
            ],
        }
