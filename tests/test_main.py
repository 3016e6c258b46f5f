"""Tests for the maintenance command line"""
import json

import pytest

from main import _parse_args, main


@pytest.mark.asyncio
async def test_extract_command_prints_candidates(tmp_path, capsys):
    args = _parse_args([
        "--config", str(tmp_path / "absent.yaml"),
        "extract", "I love teaching math and science to my students.",
    ])

    assert await main(args) == 0

    output = json.loads(capsys.readouterr().out)
    assert output == [{
        "key": "subjects",
        "value": ["math", "science"],
        "memory_type": "context",
        "confidence": 0.8,
    }]


@pytest.mark.asyncio
async def test_stats_and_cleanup_commands(tmp_path, capsys):
    config = tmp_path / "config.yaml"
    config.write_text(
        f"storage:\n  sqlite_path: {tmp_path / 'cli.db'}\n",
        encoding="utf-8",
    )

    assert await main(_parse_args(["--config", str(config), "stats", "t1"])) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total_memories"] == 0

    assert await main(_parse_args(["--config", str(config), "cleanup"])) == 0
    assert json.loads(capsys.readouterr().out) == {}


def test_command_is_required():
    with pytest.raises(SystemExit):
        _parse_args([])
