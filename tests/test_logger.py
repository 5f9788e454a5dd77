"""Tests for the logging singleton."""

from __future__ import annotations

import logging

import pytest

from sandgate.logger import set_level


@pytest.fixture
def restore_root_level():
    root = logging.getLogger()
    saved = root.level
    yield root
    root.setLevel(saved)


def test_set_level_applies_named_level(restore_root_level):
    set_level("debug")
    assert restore_root_level.level == logging.DEBUG


def test_set_level_unknown_name_falls_back_to_info(restore_root_level):
    set_level("chatty")
    assert restore_root_level.level == logging.INFO
