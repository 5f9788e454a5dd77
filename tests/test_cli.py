"""Tests for the sandgate command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from sandgate.__main__ import main
from sandgate.config import get_settings


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestReviewCommand:
    def test_exit_zero_when_safe(self, tmp_path: Path):
        with patch(
            "sandgate.security.skill_review.review_skill_directory",
            AsyncMock(return_value=True),
        ) as review:
            assert _run(["review", str(tmp_path)]) == 0
        review.assert_awaited_once_with(tmp_path)

    def test_exit_one_when_unsafe(self, tmp_path: Path):
        with patch(
            "sandgate.security.skill_review.review_skill_directory",
            AsyncMock(return_value=False),
        ):
            assert _run(["review", str(tmp_path)]) == 1

    def test_requires_directory_argument(self):
        assert _run(["review"]) == 2


class TestEgressCommands:
    def test_egress_args_prints_json(self, capsys):
        args = ["--cap-add=NET_ADMIN", "-e", "ALLOWED_EGRESS_IPS=192.0.2.1"]
        with patch(
            "sandgate.security.network_policy.get_network_args",
            AsyncMock(return_value=args),
        ):
            assert _run(["egress-args"]) == 0
        assert json.loads(capsys.readouterr().out) == args

    def test_egress_args_disabled_prints_empty_list(self, capsys):
        with patch(
            "sandgate.security.network_policy.get_network_args",
            AsyncMock(return_value=[]),
        ):
            assert _run(["egress-args"]) == 0
        assert json.loads(capsys.readouterr().out) == []

    def test_egress_init_creates_default_file_once(self, capsys):
        path = get_settings().allowlist_path
        assert not path.exists()

        assert _run(["egress-init"]) == 0
        assert path.exists()
        assert "Created" in capsys.readouterr().out

        assert _run(["egress-init"]) == 0
        assert "Already exists" in capsys.readouterr().out

    def test_egress_check_passes_configured_image(self):
        with patch(
            "sandgate.security.network_policy.check_egress_support", return_value=True
        ) as check:
            assert _run(["egress-check"]) == 0
        check.assert_called_once_with("docker", "sandgate-agent:latest", timeout=15.0)

    def test_egress_check_unsupported(self, capsys):
        with patch("sandgate.security.network_policy.check_egress_support", return_value=False):
            assert _run(["egress-check"]) == 1
        assert "does not support" in capsys.readouterr().err


def test_command_is_required():
    assert _run([]) == 2
