import asyncio

import pytest
import yaml
from click.testing import CliRunner

from serial_writer.cli import cli
from serial_writer.storage import JsonFileStore
from serial_writer.utils.logger import reset_logger

from fakes import FakeBackend, make_plain_prose, make_prose, make_review


@pytest.fixture(autouse=True)
def fresh_logger():
    reset_logger()
    yield
    reset_logger()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "state.json"


@pytest.fixture
def config_file(tmp_path, store_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"store_path": str(store_path), "log_level": "WARNING"}))
    return path


def init_project(runner, config_file):
    return runner.invoke(cli, [
        '-c', str(config_file), 'init', 'ember',
        '--title', 'The Ember Road',
        '--protagonist', 'Aria',
        '--essence', 'A courier carries fire across a frozen continent.',
    ])


def test_cli_help(runner):
    result = runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    for command in ('init', 'write', 'status', 'lint'):
        assert command in result.output


def test_init_creates_project(runner, config_file, store_path):
    result = init_project(runner, config_file)
    assert result.exit_code == 0, result.output

    project = asyncio.run(JsonFileStore(store_path).get_project('ember'))
    assert project.title == 'The Ember Road'
    assert project.protagonist == 'Aria'
    assert project.language == 'en'
    assert project.settings.target_word_count == 2800


def test_init_rejects_duplicate(runner, config_file):
    assert init_project(runner, config_file).exit_code == 0

    result = init_project(runner, config_file)
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_invalid_config(runner, tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("retry:\n  max_retries: -1\n")

    result = runner.invoke(cli, ['-c', str(bad), 'status', 'ember'])
    assert result.exit_code == 1
    assert "Invalid config" in result.output


def test_write_commits_chapter(runner, config_file, store_path, monkeypatch):
    backend = FakeBackend()
    monkeypatch.setattr('serial_writer.cli.create_backend', lambda provider, model='': backend)
    assert init_project(runner, config_file).exit_code == 0

    result = runner.invoke(cli, ['-c', str(config_file), 'write', 'ember'])
    assert result.exit_code == 0, result.output

    store = JsonFileStore(store_path)
    chapter = asyncio.run(store.get_chapter('ember', 1))
    assert chapter.title == 'The Ember Gate'
    assert asyncio.run(store.get_project('ember')).current_chapter == 1

    status = runner.invoke(cli, ['-c', str(config_file), 'status', 'ember'])
    assert status.exit_code == 0
    assert "1/1000 chapters" in status.output
    assert "The Ember Gate" in status.output
    assert "accepted" in status.output


def test_write_reports_rejection(runner, config_file, store_path, monkeypatch):
    backend = FakeBackend().queue('critic', *[make_review(3)] * 3)
    monkeypatch.setattr('serial_writer.cli.create_backend', lambda provider, model='': backend)
    assert init_project(runner, config_file).exit_code == 0

    result = runner.invoke(cli, ['-c', str(config_file), 'write', 'ember'])

    assert result.exit_code == 1
    assert "QualityRejection" in result.output
    assert asyncio.run(JsonFileStore(store_path).latest_chapter_number('ember')) == 0


def test_status_unknown_project(runner, config_file):
    result = runner.invoke(cli, ['-c', str(config_file), 'status', 'ghost'])
    assert result.exit_code == 1
    assert "Unknown project" in result.output


def test_lint_style_only(runner, config_file, tmp_path):
    chapter = tmp_path / "chapter.txt"
    chapter.write_text(make_prose(), encoding="utf-8")

    result = runner.invoke(cli, ['-c', str(config_file), 'lint', str(chapter)])

    assert result.exit_code == 0, result.output
    assert "chapter.txt: style" in result.output
    assert "Composition" not in result.output


def test_lint_with_genre_gate(runner, config_file, tmp_path):
    chapter = tmp_path / "chapter.txt"
    chapter.write_text(make_plain_prose(1400), encoding="utf-8")

    result = runner.invoke(cli, [
        '-c', str(config_file), 'lint', str(chapter), '--genre', 'fantasy', '--target', '2800',
    ])

    assert result.exit_code == 0, result.output
    assert "Composition: dialogue" in result.output
    assert "word count 1400 below 2240 (target 2800)" in result.output
