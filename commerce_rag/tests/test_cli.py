"""
Tests for the backfill command line.
"""

import json
import pytest


@pytest.fixture(autouse=True)
def no_embedding_env(monkeypatch):
    for name in ("EMBEDDINGS_PROVIDER", "EMBEDDING_DIM", "COMMERCE_RAG_DB_PATH"):
        monkeypatch.delenv(name, raising=False)


class TestBackfillCli:
    def test_dry_run(self, seeded_db_file, capsys):
        from commerce_rag.indexer.cli import main

        exit_code = main(["--entity-type", "product,order", "--dry-run", "--db-path", seeded_db_file])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["evento"] == "rag_backfill"
        assert summary["mensagem"] == "Simulação concluída com sucesso."
        assert summary["total"] == 4
        assert summary["sucesso"] == 0

    def test_full_run_persists_documents(self, seeded_db_file, capsys):
        from commerce_rag.common.database import Database
        from commerce_rag.indexer.cli import main

        exit_code = main(["--batch-size", "2", "--db-path", seeded_db_file])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["mensagem"] == "Backfill concluído com sucesso."
        assert summary["sucesso"] == 9
        assert summary["detalhes"]["customer"] == {"total": 1, "success": 1, "failures": 0}

        db = Database(seeded_db_file)
        assert db.connection.execute("SELECT COUNT(*) FROM rag_documents").fetchone()[0] == 9
        db.close()

    def test_single_entity(self, seeded_db_file, capsys):
        from commerce_rag.indexer.cli import main

        exit_code = main(["--entity-type", "product", "--entity-id", "p-2", "--db-path", seeded_db_file])

        assert exit_code == 0
        assert json.loads(capsys.readouterr().out)["total"] == 1

    def test_entity_id_needs_single_type(self, seeded_db_file, capsys):
        from commerce_rag.indexer.cli import main

        exit_code = main(["--entity-id", "p-2", "--db-path", seeded_db_file])

        assert exit_code == 1
        error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert error == {
            "evento": "rag_backfill_erro",
            "mensagem": "Informe apenas um entity_type ao usar entity-id.",
        }

    def test_invalid_entity_type(self, seeded_db_file, capsys):
        from commerce_rag.indexer.cli import main

        exit_code = main(["--entity-type", "invoice", "--db-path", seeded_db_file])

        assert exit_code == 1
        assert "Informe um entity_type válido." in capsys.readouterr().err

    def test_reprocess_failures(self, seeded_db_file, capsys):
        import asyncio
        from commerce_rag.common.database import Database
        from commerce_rag.common.failure_ledger import FailureLedger
        from commerce_rag.common.schemas import EntityType
        from commerce_rag.indexer.cli import main

        db = Database(seeded_db_file)
        asyncio.run(FailureLedger(db).upsert_failure(EntityType.ORDER, "o-1", "timeout", False))
        db.close()

        exit_code = main(["--reprocess-failures", "--db-path", seeded_db_file])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary == {
            "evento": "rag_backfill_reprocessamento",
            "mensagem": "Reprocessamento de falhas concluído.",
            "total": 1,
            "sucesso": 1,
            "falhas": 0,
        }

    def test_unexpected_error_is_generic(self, seeded_db_file, capsys, monkeypatch):
        from commerce_rag.indexer import cli

        def broken(*args, **kwargs):
            raise RuntimeError("disk I/O error")

        monkeypatch.setattr(cli, "build_components", broken)

        exit_code = cli.main(["--db-path", seeded_db_file])

        assert exit_code == 1
        err = capsys.readouterr().err
        assert "Erro inesperado ao executar o backfill." in err
