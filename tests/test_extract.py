# tests/test_extract.py
"""Tests for code extraction from raw model replies."""


class TestTieredExtraction:
    def test_tagged_block_wins_over_prose(self):
        from holysheets.analyst.extract import ExtractionTier, extract_code

        reply = (
            "Sure! Here is the script:\n\n"
            "```python\n  total = df['Sales'].sum()\nprint(total)\n```\n\n"
            "It sums the Sales column."
        )
        result = extract_code(reply)
        assert result.tier is ExtractionTier.TAGGED
        assert result.code == "total = df['Sales'].sum()\nprint(total)"
        assert not result.ambiguous

    def test_tagged_block_preferred_over_earlier_generic_block(self):
        from holysheets.analyst.extract import extract_code

        reply = "```\nnot this\n```\nthen\n```py\nprint(1)\n```"
        assert extract_code(reply).code == "print(1)"

    def test_tag_is_case_insensitive(self):
        from holysheets.analyst.extract import extract_tagged_block

        assert extract_tagged_block("```Python\nx = 1\n```") == "x = 1"
        assert extract_tagged_block("```python3\nx = 2\n```") == "x = 2"

    def test_generic_block(self):
        from holysheets.analyst.extract import ExtractionTier, extract_code

        result = extract_code("Here:\n```\nprint('hi')\n```")
        assert result.tier is ExtractionTier.GENERIC
        assert result.code == "print('hi')"

    def test_raw_fallback_is_trimmed_and_ambiguous(self):
        from holysheets.analyst.extract import ExtractionTier, extract_code

        result = extract_code("\n\n  print(json.dumps({'type': 'markdown'}))  \n")
        assert result.tier is ExtractionTier.RAW
        assert result.ambiguous
        assert result.code == "print(json.dumps({'type': 'markdown'}))"

    def test_single_line_fences(self):
        from holysheets.analyst.extract import ExtractionTier, extract_code, extract_generic_block

        result = extract_code("```python print(1)```")
        assert result.tier is ExtractionTier.TAGGED
        assert result.code == "print(1)"
        assert extract_code("```py3 = 1```").tier is not ExtractionTier.TAGGED
        assert extract_generic_block("```text print(2)```") == "print(2)"

    def test_tiers_return_none_when_absent(self):
        from holysheets.analyst.extract import extract_generic_block, extract_tagged_block

        assert extract_tagged_block("no fences here") is None
        assert extract_generic_block("no fences here") is None


class TestExtractionNeverRaises:
    def test_none_and_empty(self):
        from holysheets.analyst.extract import extract_code

        assert extract_code(None).empty
        assert extract_code("").empty
        assert extract_code("   \n").empty

    def test_unterminated_fence_falls_back_to_raw(self):
        from holysheets.analyst.extract import ExtractionTier, extract_code

        result = extract_code("```python\nprint(1)")
        assert result.tier is ExtractionTier.RAW
        assert result.code.startswith("```python")
