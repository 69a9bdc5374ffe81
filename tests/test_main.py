"""Tests for __main__.py entry point."""

import runpy
import sys
from unittest.mock import patch


class TestMainModule:
    """Tests for __main__.py module."""

    def test_main_imports_cli(self):
        from inboxview.__main__ import main
        assert callable(main)

    def test_runpy_finds_module(self):
        with patch.object(sys, "argv", ["inboxview", "--help"]):
            with patch("inboxview.cli.main") as mock_main:
                mock_main.side_effect = SystemExit(0)
                try:
                    runpy.run_module("inboxview", run_name="__main__")
                except SystemExit:
                    pass
                mock_main.assert_called_once()
