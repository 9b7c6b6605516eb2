import json

import yaml

from storydesk.cli import main
from storydesk.storage import get_source, init_db, list_articles


def _write_config(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "paths": {
                    "data_dir": str(tmp_path / "data"),
                    "state_db": str(tmp_path / "data" / "state.sqlite3"),
                }
            }
        ),
        encoding="utf-8",
    )
    return str(path)


def test_cli_source_and_article_commands(tmp_path, monkeypatch):
    monkeypatch.delenv("SD_DB_URL", raising=False)
    config_path = _write_config(tmp_path)
    articles_file = tmp_path / "articles.json"
    articles_file.write_text(
        json.dumps(
            [
                {"source_id": "src-1", "title": "Casino night", "content_quality_score": 70},
                {"source_id": "src-1", "title": "Harbour news", "content_quality_score": 70},
            ]
        ),
        encoding="utf-8",
    )

    assert main(["--config", config_path, "db", "migrate"]) == 0
    assert main(["--config", config_path, "sources", "add", "--id", "src-1", "--name", "Herald"]) == 0
    assert main(["--config", config_path, "articles", "ingest", "--file", str(articles_file)]) == 0
    assert (
        main(
            [
                "--config",
                config_path,
                "articles",
                "bulk-discard",
                "--keyword",
                "casino",
                "--apply",
            ]
        )
        == 0
    )
    assert main(["--config", config_path, "sources", "active", "src-1", "off"]) == 0

    conn = init_db(str(tmp_path / "data" / "state.sqlite3"))
    titles = {article.title: article.processing_status.value for article in list_articles(conn)}
    assert titles == {"Casino night": "discarded", "Harbour news": "new"}
    assert get_source(conn, "src-1").is_active is False
    conn.close()


def test_cli_reports_failed_actions(tmp_path, monkeypatch):
    monkeypatch.delenv("SD_DB_URL", raising=False)
    config_path = _write_config(tmp_path)
    assert main(["--config", config_path, "stories", "approve", "story_missing"]) == 1
    assert main(["--config", config_path, "queue", "process"]) == 1
