"""Tests for command-line argument parsing."""

import pytest

from voicenote.main import _build_parser


class TestRecordArguments:

    def test_known_language_accepted(self):
        args = _build_parser().parse_args(["record", "--language", "es"])
        assert args.language == "es"

    def test_auto_language_accepted(self):
        args = _build_parser().parse_args(["record", "--language", "auto"])
        assert args.language == "auto"

    def test_unknown_language_rejected(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["record", "--language", "klingon"])

    def test_language_optional(self):
        assert _build_parser().parse_args(["record"]).language is None
