# tests/test_sandbox.py
"""Tests for the persistent sandbox session."""

import sys

import pytest


class TestDatasetPrecondition:
    def test_execute_without_dataset_raises_named_error(self):
        from holysheets.analyst.errors import DatasetNotLoadedError, FailureKind
        from holysheets.analyst.sandbox import SandboxSession

        sandbox = SandboxSession()
        with pytest.raises(DatasetNotLoadedError) as excinfo:
            sandbox.execute("print(df.shape)")
        assert excinfo.value.kind is FailureKind.MISSING_DATASET
        assert "DatasetNotLoadedError" in str(excinfo.value)
        assert "NameError" not in str(excinfo.value)

    def test_script_does_not_run_without_dataset(self):
        from holysheets.analyst.errors import DatasetNotLoadedError
        from holysheets.analyst.sandbox import SandboxSession

        sandbox = SandboxSession()
        with pytest.raises(DatasetNotLoadedError):
            sandbox.execute("side_effect = 1")
        assert sandbox.get("side_effect") is None

    def test_columns_without_dataset(self):
        from holysheets.analyst.errors import DatasetNotLoadedError
        from holysheets.analyst.sandbox import SandboxSession

        with pytest.raises(DatasetNotLoadedError):
            SandboxSession().columns()


class TestExecution:
    def test_captures_stdout(self, loaded_sandbox):
        out = loaded_sandbox.execute("print(json.dumps({'total': int(df['Sales'].sum())}))")
        assert out.strip() == '{"total": 500}'

    def test_no_output_returns_empty_string(self, loaded_sandbox):
        assert loaded_sandbox.execute("x = 1") == ""

    def test_stdout_restored_after_success_and_failure(self, loaded_sandbox):
        from holysheets.analyst.errors import ScriptExecutionError

        original = sys.stdout
        loaded_sandbox.execute("print('hi')")
        assert sys.stdout is original
        with pytest.raises(ScriptExecutionError):
            loaded_sandbox.execute("print('before'); raise ValueError('bad')")
        assert sys.stdout is original

    def test_runtime_error_message(self, loaded_sandbox):
        from holysheets.analyst.errors import FailureKind, ScriptExecutionError

        with pytest.raises(ScriptExecutionError) as excinfo:
            loaded_sandbox.execute("1 / 0")
        assert str(excinfo.value) == "ZeroDivisionError: division by zero"
        assert excinfo.value.error_type == "ZeroDivisionError"
        assert excinfo.value.kind is FailureKind.RUNTIME

    def test_missing_column_is_classified(self, loaded_sandbox):
        from holysheets.analyst.errors import FailureKind, ScriptExecutionError

        with pytest.raises(ScriptExecutionError) as excinfo:
            loaded_sandbox.execute("df['Profit'].sum()")
        assert excinfo.value.kind is FailureKind.MISSING_COLUMN
        assert "Profit" in str(excinfo.value)

    def test_syntax_error_is_classified(self, loaded_sandbox):
        from holysheets.analyst.errors import FailureKind, ScriptExecutionError

        with pytest.raises(ScriptExecutionError) as excinfo:
            loaded_sandbox.execute("Here is your answer: the total")
        assert excinfo.value.kind is FailureKind.SYNTAX
        assert excinfo.value.error_type == "SyntaxError"

    def test_system_exit_is_contained(self, loaded_sandbox):
        from holysheets.analyst.errors import ScriptExecutionError

        with pytest.raises(ScriptExecutionError, match="SystemExit"):
            loaded_sandbox.execute("import sys; sys.exit(3)")

    def test_preloaded_modules(self, loaded_sandbox):
        out = loaded_sandbox.execute("print(json.dumps([pd.__name__, np.__name__]))")
        assert out.strip() == '["pandas", "numpy"]'

    def test_runs_counter(self, loaded_sandbox):
        loaded_sandbox.execute("x = 1")
        loaded_sandbox.execute("y = 2")
        assert loaded_sandbox.runs == 2


class TestSessionState:
    def test_state_persists_across_runs(self, loaded_sandbox):
        loaded_sandbox.execute("threshold = 120")
        out = loaded_sandbox.execute("print(int((df['Sales'] > threshold).sum()))")
        assert out.strip() == "2"

    def test_mutating_dataset_is_visible_in_columns(self, loaded_sandbox):
        loaded_sandbox.execute("df = df.rename(columns={'Sales': 'Revenue'})")
        assert loaded_sandbox.columns() == ["Date", "Revenue"]

    def test_new_upload_replaces_binding(self, loaded_sandbox):
        loaded_sandbox.execute("df['Extra'] = 1")
        meta = loaded_sandbox.load_dataset(b"Region,Units\nNorth,3\n", "units.csv")
        assert meta.name == "units.csv"
        assert loaded_sandbox.columns() == ["Region", "Units"]
        assert loaded_sandbox.dataset_meta is meta

    def test_reset_drops_everything(self, loaded_sandbox):
        loaded_sandbox.execute("keep = 1")
        loaded_sandbox.reset()
        assert not loaded_sandbox.has_dataset
        assert loaded_sandbox.get("keep") is None
        assert loaded_sandbox.dataset_meta is None

    def test_custom_dataset_variable(self, sales_csv_bytes):
        from holysheets.analyst.sandbox import SandboxSession

        sandbox = SandboxSession(dataset_variable="data")
        sandbox.load_dataset(sales_csv_bytes, "sales.csv")
        assert sandbox.execute("print(len(data))").strip() == "3"

    def test_load_dataset_file(self, sales_csv):
        from holysheets.analyst.sandbox import SandboxSession

        sandbox = SandboxSession()
        meta = sandbox.load_dataset_file(sales_csv)
        assert meta.rows == 3
        assert sandbox.has_dataset

    def test_series_binding_reports_its_name_as_column(self, loaded_sandbox):
        loaded_sandbox.execute("df = df['Sales']")
        assert loaded_sandbox.columns() == ["Sales"]
