"""CLI smoke tests for the commands that need no provider."""
import pytest
from typer.testing import CliRunner

from secondbrain.main import app
from secondbrain.schemas import MessageRole
from secondbrain.storage.local_store import LocalStore

runner = CliRunner()


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"data_dir: {tmp_path / 'store'}\nlog_file: null\nlog_level: WARNING\n", encoding="utf-8"
    )
    return str(path)


def test_add_then_list_and_delete(config_path, write_file):
    doc_path = write_file("Meeting Notes.txt", "Decided to ship on Friday.")

    added = runner.invoke(app, ["add", str(doc_path), "--config", config_path])
    listed = runner.invoke(app, ["documents", "--config", config_path])
    deleted = runner.invoke(app, ["delete", "1", "--config", config_path])

    assert added.exit_code == 0, added.output
    assert "meeting-notes.txt" in listed.output
    assert deleted.exit_code == 0
    assert "No documents yet" in runner.invoke(app, ["documents", "--config", config_path]).output


def test_delete_unknown_document_fails(config_path):
    result = runner.invoke(app, ["delete", "9", "--config", config_path])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_status_on_empty_store(config_path):
    result = runner.invoke(app, ["status", "--config", config_path])

    assert result.exit_code == 0
    assert "Every fragment has exactly one embedding" in result.output


def test_bad_config_path(tmp_path):
    result = runner.invoke(app, ["status", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "configuration" in result.output


def test_conversations_lists_stored_conversations(config_path, tmp_path):
    store = LocalStore(tmp_path / "store")
    conversation = store.create_conversation("When is the launch?")
    store.add_message(conversation.id, MessageRole.USER, "When is the launch?")

    result = runner.invoke(app, ["conversations", "--config", config_path])

    assert result.exit_code == 0, result.output
    assert "When is the launch?" in result.output


def test_conversations_when_empty(config_path):
    result = runner.invoke(app, ["conversations", "--config", config_path])

    assert result.exit_code == 0
    assert "No conversations yet" in result.output
