"""
HolySheets - ask questions about spreadsheets in plain language

A language model writes a pandas script for each question, the script runs
against the loaded dataset in a persistent sandbox, and its printed JSON is
validated as a markdown, table, chart or kpi answer.  Failed attempts are fed
back to the model for self-correction.

Main Components:
    - holysheets.analyst: Prompting, backends, sandbox, validation and the retry loop
    - holysheets.sdk: Programmatic entry points (analyze, open_session)
    - holysheets.cli: The ``holysheets`` command
"""

from .sdk import analyze, health, make_backend, open_session

__version__ = "0.3.0"

__all__ = ["analyze", "health", "make_backend", "open_session"]
