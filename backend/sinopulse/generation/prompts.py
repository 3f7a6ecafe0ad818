"""Prompt construction for comparison generation."""

from sinopulse.domain.titles import CATEGORY_MAP

FIRST_YEAR = 1945
LAST_YEAR = 2024

SYSTEM_PROMPT = """You are a data analyst producing historical comparisons between China and the United States.
Return ONLY valid JSON. No markdown fences, no commentary before or after the JSON object."""

_LANGUAGE_INSTRUCTIONS = {
    "zh": (
        "Provide the response content in Simplified Chinese. In 'detailedAnalysis' you MUST use '###' "
        "for era headers (e.g. ### 1945-1979) and bullet points. Never write a single long paragraph. "
        "Always use double newlines between sections."
    ),
    "en": (
        "Provide the response content in English. In 'detailedAnalysis' you MUST use '###' for era headers "
        "and bullet points. Never write a single long paragraph. Always use double newlines between sections."
    ),
}

_RESPONSE_SHAPE = """{
  "title": "string, title in the requested language",
  "titleEn": "string, title in English",
  "titleZh": "string, title in Simplified Chinese",
  "category": "one of the allowed categories",
  "yAxisLabel": "string, unit of the values",
  "data": [{"year": "1945", "usa": 0.0, "china": 0.0}],
  "summary": "string",
  "detailedAnalysis": "markdown string",
  "futureOutlook": "string",
  "sources": [{"title": "string", "url": "string"}]
}"""


def build_prompt(request_text: str, locale: str) -> tuple[str, list[dict]]:
    """Build system prompt and messages for one comparison request.

    Returns:
        (system_prompt, messages)
    """
    language_instruction = _LANGUAGE_INSTRUCTIONS.get(locale, _LANGUAGE_INSTRUCTIONS["en"])
    categories = ", ".join(CATEGORY_MAP)

    user_prompt = f"""Generate a comparative analysis and historical dataset between China and the United States for the following topic: "{request_text}".

Requirements:
1. Data granularity: provide a data point for every single year. Do not skip years.
2. Time range: start from {FIRST_YEAR} (or the earliest year the metric is available after {FIRST_YEAR}) and go up to {LAST_YEAR}.
3. Missing data: interpolate reasonably, or use 0 if the metric did not exist at that time.
4. Both 'usa' and 'china' values must be numbers. Years are 4-digit strings. No year may appear twice.
5. Titles:
   - 'title': display title in the requested language ({locale}). Format "Sino-US [Topic] Annual Comparison" (or "中美[Topic]年度对比" in Chinese). Do not include year ranges or the word "Analysis".
   - 'titleEn': always the English title, format "Sino-US [Topic] Annual Comparison".
   - 'titleZh': always the Simplified Chinese title, format "中美[Topic]年度对比".
6. 'category': one of: {categories}.
7. Content:
   - summary: concise executive summary, no leading header.
   - detailedAnalysis: markdown divided into 3-4 eras with '###' headers and bullet points.
   - futureOutlook: prediction of future trends, no leading header.
   - sources: 3-5 primary data sources (e.g. World Bank, IMF) with a direct or general URL.
8. Language: {language_instruction}

Respond with a single JSON object of this shape:
{_RESPONSE_SHAPE}"""

    return SYSTEM_PROMPT, [{"role": "user", "content": user_prompt}]
