"""
Tests for the command line entry point.
"""

from pathlib import Path

import pytest

from encore import __version__
from encore.__main__ import parse_args


class TestParseArgs:
    def test_defaults(self) -> None:
        args = parse_args([])
        assert args.config is None
        assert args.verbose is False
        assert args.host is None
        assert args.port is None

    def test_overrides(self) -> None:
        args = parse_args(["-c", "my.toml", "-v", "--host", "0.0.0.0", "--port", "9200"])
        assert args.config == Path("my.toml")
        assert args.verbose is True
        assert args.host == "0.0.0.0"
        assert args.port == 9200

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--version"])
        assert __version__ in capsys.readouterr().out
