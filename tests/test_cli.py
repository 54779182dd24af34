from unittest.mock import AsyncMock, patch

from companion import cli
from companion.memory.history_cache import HistoryCache
from tests.helpers.fakes import FakeRedis


def test_seed_history_from_file(tmp_path, capsys):
    seed = tmp_path / "alice.txt"
    seed.write_text("Human: hi\n\nAlice: hello\n", encoding="utf-8")
    redis = FakeRedis()

    with patch.object(cli.HistoryCache, "from_url", return_value=HistoryCache(redis)):
        code = cli.main(
            ["seed-history", str(seed), "--companion", "Alice", "--model", "gpt-4", "--user", "u1"]
        )

    assert code == 0
    assert redis.lists["Alice-gpt-4-u1"] == ["Alice: hello", "Human: hi"]
    assert "seeded 2 line(s)" in capsys.readouterr().out


def test_seed_history_rejects_empty_identity(tmp_path):
    seed = tmp_path / "alice.txt"
    seed.write_text("x", encoding="utf-8")
    code = cli.main(
        ["seed-history", str(seed), "--companion", "Alice", "--model", "gpt-4", "--user", ""]
    )
    assert code == 1


def test_seed_history_rejects_empty_delimiter(tmp_path, capsys):
    seed = tmp_path / "alice.txt"
    seed.write_text("x", encoding="utf-8")
    code = cli.main(
        [
            "seed-history", str(seed),
            "--companion", "Alice", "--model", "gpt-4", "--user", "u1",
            "--delimiter", "",
        ]
    )
    assert code == 1
    assert "--delimiter" in capsys.readouterr().err


def test_seed_history_store_down(tmp_path, capsys):
    seed = tmp_path / "alice.txt"
    seed.write_text("x", encoding="utf-8")
    with patch.object(cli.HistoryCache, "from_url", return_value=HistoryCache(FakeRedis(fail=True))):
        code = cli.main(
            ["seed-history", str(seed), "--companion", "A", "--model", "m", "--user", "u"]
        )
    assert code == 1
    assert "unavailable" in capsys.readouterr().err


def test_bootstrap_schema_reports_extension(capsys):
    backend = AsyncMock()
    backend.extension_installed.return_value = True
    with patch.object(cli, "PgVectorBackend", return_value=backend):
        code = cli.main(["bootstrap-schema"])
    assert code == 0
    backend.initialize.assert_awaited_once()
    backend.close.assert_awaited_once()
    assert "pgvector extension installed" in capsys.readouterr().out


def test_bootstrap_schema_missing_extension():
    backend = AsyncMock()
    backend.extension_installed.return_value = False
    with patch.object(cli, "PgVectorBackend", return_value=backend):
        assert cli.main(["bootstrap-schema"]) == 1


def test_bootstrap_schema_connection_error(capsys):
    backend = AsyncMock()
    backend.initialize.side_effect = ConnectionRefusedError("refused")
    with patch.object(cli, "PgVectorBackend", return_value=backend):
        assert cli.main(["bootstrap-schema"]) == 1
    backend.close.assert_awaited_once()
