# tests/test_prompts.py
"""Tests for prompt assembly and diagnostic addenda."""


class TestBuildPrompt:
    def test_section_order(self):
        from holysheets.analyst.prompts import build_prompt

        prompt = build_prompt(schema="ACTIVE FILE METADATA:\n- Columns: [\"Date\"]", request="total sales")
        rules = prompt.index("RULES:")
        schema = prompt.index("DATA SCHEMA:")
        request = prompt.index('USER REQUEST: "total sales"')
        assert rules < schema < request
        assert prompt.rstrip().endswith("Write the Python script now.")

    def test_fixed_rules_are_present(self):
        from holysheets.analyst.prompts import build_prompt

        prompt = build_prompt(schema=None, request="x")
        assert "'df' is ALREADY LOADED" in prompt
        assert "EXACT names" in prompt
        assert "NaN" in prompt
        assert "EXACTLY ONE JSON object" in prompt
        assert "'markdown' result naming the missing fields" in prompt

    def test_missing_schema_placeholder(self):
        from holysheets.analyst.prompts import NO_SCHEMA, build_prompt

        assert NO_SCHEMA in build_prompt(schema=None, request="x")
        assert NO_SCHEMA in build_prompt(schema="   ", request="x")

    def test_feedback_replaces_closing_instruction(self):
        from holysheets.analyst.prompts import build_prompt

        prompt = build_prompt(schema="s", request="x", feedback="PREVIOUS ATTEMPT FAILED.\nfix it")
        assert prompt.rstrip().endswith("fix it")
        assert "Write the Python script now." not in prompt

    def test_history_is_trimmed_to_recent_turns(self):
        from holysheets.analyst.prompts import build_prompt

        history = [
            {"user_message": f"question {i}", "response": {"type": "markdown", "summary": f"answer {i}"}}
            for i in range(10)
        ]
        prompt = build_prompt(schema="s", request="next", history=history, max_history_turns=2)
        assert "CONVERSATION SO FAR:" in prompt
        assert "User: question 9" in prompt
        assert "Assistant: [markdown] answer 8" in prompt
        assert "question 7" not in prompt

    def test_history_accepts_turn_models(self):
        from holysheets.analyst.agent import ConversationTurn
        from holysheets.analyst.contract import MarkdownResult
        from holysheets.analyst.prompts import build_prompt

        turn = ConversationTurn(user_message="hi", response=MarkdownResult(summary="hello"))
        prompt = build_prompt(schema="s", request="x", history=[turn])
        assert "User: hi" in prompt
        assert "Assistant: [markdown] hello" in prompt

    def test_history_is_not_mutated(self):
        from holysheets.analyst.prompts import build_prompt

        history = [{"user_message": "a", "response": None}]
        snapshot = [dict(t) for t in history]
        build_prompt(schema="s", request="x", history=history)
        assert history == snapshot

    def test_pure(self):
        from holysheets.analyst.prompts import build_prompt

        kwargs = dict(schema="s", request="total", history=[], feedback=None)
        assert build_prompt(**kwargs) == build_prompt(**kwargs)


class TestFeedback:
    def test_column_feedback_lists_live_columns_literally(self):
        from holysheets.analyst.prompts import build_column_feedback

        text = build_column_feedback(error="KeyError: 'Profit'", request="show profit trend", columns=["Date", "Sales"])
        assert '["Date", "Sales"]' in text
        assert "KeyError: 'Profit'" in text
        assert 'Original Request: "show profit trend"' in text

    def test_error_feedback_runtime(self):
        from holysheets.analyst.prompts import build_error_feedback

        text = build_error_feedback(error="ZeroDivisionError: division by zero", request="ratio")
        assert "failed with this error" in text
        assert "ZeroDivisionError: division by zero" in text
        assert 'Original Request: "ratio"' in text
        assert "RE-WRITE" in text

    def test_error_feedback_validation_includes_output(self):
        from holysheets.analyst.errors import FailureKind
        from holysheets.analyst.prompts import build_error_feedback

        text = build_error_feedback(
            error="not a single valid JSON object",
            request="total",
            kind=FailureKind.VALIDATION,
            raw_output="Total is 500",
        )
        assert "output was rejected" in text
        assert "Total is 500" in text

    def test_error_feedback_extraction(self):
        from holysheets.analyst.errors import FailureKind
        from holysheets.analyst.prompts import build_error_feedback

        text = build_error_feedback(error="no code", request="total", kind=FailureKind.EXTRACTION)
        assert "No runnable Python code" in text
