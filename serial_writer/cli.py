import asyncio
import contextlib
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .client import GenerationClient, create_backend
from .config import AppConfig
from .errors import SerialWriterError
from .genres import GENRE_REGISTRY, get_genre
from .models import Project
from .pipeline import Pipeline
from .quality import StyleAnalyzer, evaluate
from .storage import JsonFileStore
from .utils.logger import setup_logger
from .utils.progress import create_progress, describe_status
from .utils.text import count_words, detect_language

console = Console()


@click.group()
@click.option('--config', '-c', type=click.Path(dir_okay=False), default='config.yaml',
              help='Path to configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool):
    """Serial Writer - generate chapters of a long-running web serial."""
    ctx.ensure_object(dict)

    config_path = Path(config)
    try:
        ctx.obj['config'] = AppConfig.from_yaml(config_path) if config_path.exists() else AppConfig()
    except Exception as e:
        raise click.ClickException(f"Invalid config {config_path}: {e}")

    app_config = ctx.obj['config']
    log_level = "DEBUG" if verbose else app_config.log_level
    logger = setup_logger(log_level, app_config.log_file)
    ctx.obj['logger'] = logger

    logger.debug(f"Serial Writer v{__version__}")
    if config_path.exists():
        logger.info(f"Config loaded from: {config_path}")


def _store(config: AppConfig) -> JsonFileStore:
    try:
        return JsonFileStore(config.store_path)
    except SerialWriterError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.argument('project_id')
@click.option('--title', '-t', default='', help='Story title')
@click.option('--genre', '-g', type=click.Choice(sorted(GENRE_REGISTRY)), default='fantasy', help='Genre profile')
@click.option('--protagonist', '-p', default='', help='Protagonist name')
@click.option('--chapters', type=int, default=1000, help='Target chapter count')
@click.option('--words', type=int, default=None, help='Target words per chapter')
@click.option('--language', '-l', default=None, help='Story language (detected from the essence when omitted)')
@click.option('--essence', '-e', default='', help='Premise, voice and world rules')
@click.option('--essence-file', type=click.Path(exists=True, dir_okay=False), help='Read the essence from a file')
@click.pass_context
def init(ctx: click.Context, project_id: str, title: str, genre: str, protagonist: str, chapters: int,
         words: int, language: str, essence: str, essence_file: str):
    """Create a new project."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    if essence_file:
        essence = Path(essence_file).read_text(encoding="utf-8")
    settings = config.defaults.model_copy()
    if words:
        settings.target_word_count = words

    async def _init():
        store = _store(config)
        if any(p.id == project_id for p in await store.list_projects()):
            raise click.ClickException(f"Project '{project_id}' already exists")
        project = Project(
            id=project_id,
            title=title or project_id,
            genre=genre,
            protagonist=protagonist,
            target_chapters=chapters,
            story_essence=essence.strip(),
            language=language or (detect_language(essence) if essence else "en"),
            settings=settings,
        )
        await store.save_project(project)
        return project

    try:
        project = asyncio.run(_init())
    except SerialWriterError as e:
        raise click.ClickException(str(e))
    logger.success(f"Created project '{project.id}' ({project.genre}, {project.language}) in {config.store_path}")


async def _watch(store: JsonFileStore, project_id: str, progress, task_id) -> None:
    while True:
        status = await store.get_status(project_id)
        if status is not None:
            progress.update(task_id, completed=status.progress, description=describe_status(status))
        await asyncio.sleep(0.5)


@cli.command()
@click.argument('project_id')
@click.option('--count', '-n', type=int, default=1, help='Number of chapters to write')
@click.option('--api-key', envvar='SERIAL_WRITER_API_KEY', default=None, help='Provider API key')
@click.option('--model', '-m', default='', help='Override the provider model')
@click.pass_context
def write(ctx: click.Context, project_id: str, count: int, api_key: str, model: str):
    """Write the next chapter(s) of a project."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']
    if api_key:
        config.provider.api_key = api_key

    async def _write():
        store = _store(config)
        client = GenerationClient.from_config(config, backend=create_backend(config.provider, model))
        pipeline = Pipeline(store, client, config)
        results = []
        with create_progress() as progress:
            for _ in range(count):
                task_id = progress.add_task(f"{project_id}: starting", total=100)
                watcher = asyncio.create_task(_watch(store, project_id, progress, task_id))
                try:
                    result = await pipeline.produce_next_chapter(project_id)
                finally:
                    watcher.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await watcher
                results.append(result)
                if not result.ok:
                    break
                progress.update(task_id, completed=100,
                                description=f"Chapter {result.chapter.chapter_number}: {result.chapter.title}")
        return results, client

    try:
        results, client = asyncio.run(_write())
    except SerialWriterError as e:
        logger.error(f"Write failed: {e}")
        raise click.ClickException(str(e))

    for result in results:
        if result.ok:
            ch = result.chapter
            logger.success(f"Chapter {ch.chapter_number} '{ch.title}': {ch.word_count} words, score {ch.score:g}")
    logger.info(f"Token usage: {client.usage.total_tokens} total over {len(client.logs)} calls")

    failed = results[-1] if results and not results[-1].ok else None
    if failed is not None:
        raise click.ClickException(f"{failed.error_kind}: {failed.error_message}")


@cli.command()
@click.argument('project_id')
@click.option('--last', type=int, default=5, help='Number of recent chapters to list')
@click.pass_context
def status(ctx: click.Context, project_id: str, last: int):
    """Show project progress and the latest run status."""
    config = ctx.obj['config']

    async def _status():
        store = _store(config)
        project = await store.get_project(project_id)
        run = await store.get_status(project_id)
        start = max(1, project.current_chapter - last + 1)
        chapters = await store.list_chapters(project_id, start=start)
        return project, run, chapters

    try:
        project, run, chapters = asyncio.run(_status())
    except SerialWriterError as e:
        raise click.ClickException(str(e))

    console.print(
        f"[bold]{escape(project.title)}[/bold] ({project.genre}, {project.language}): "
        f"{project.current_chapter}/{project.target_chapters} chapters"
    )
    if run is not None:
        line = f"Last run: chapter {run.chapter_number} {run.state.value} {run.progress}% ({run.status.value})"
        if run.error_kind:
            line += f" {run.error_kind}: {run.error_message}"
        console.print(escape(line))

    if chapters:
        table = Table(title="Recent chapters")
        table.add_column("#", justify="right")
        table.add_column("Title")
        table.add_column("Words", justify="right")
        table.add_column("Score", justify="right")
        for ch in chapters:
            table.add_row(str(ch.chapter_number), escape(ch.title), str(ch.word_count), f"{ch.score:g}")
        console.print(table)


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--language', '-l', default=None, help='Text language (detected when omitted)')
@click.option('--genre', '-g', default=None, help='Also check composition against this genre')
@click.option('--target', type=int, default=None, help='Target word count for the gate check')
@click.pass_context
def lint(ctx: click.Context, path: str, language: str, genre: str, target: int):
    """Score a chapter file with the style analyzer."""
    text = Path(path).read_text(encoding="utf-8")
    language = language or detect_language(text)
    report = StyleAnalyzer(language).analyze(text)

    table = Table(title=f"{Path(path).name}: style {report.score:.0f}/100")
    table.add_column("Axis")
    table.add_column("Score", justify="right")
    table.add_column("Detail")
    for name, axis in report.axes.items():
        style = "red" if axis.score < 50 else "yellow" if axis.score < 70 else "green"
        table.add_row(name, f"[{style}]{axis.score:.0f}[/{style}]", escape(axis.detail))
    console.print(table)

    for issue in report.issues:
        console.print(f"{issue.axis} ({issue.severity}): {escape(issue.message)}")

    if genre:
        profile = get_genre(genre)
        gate = evaluate(text, profile, target or count_words(text), language)
        c = gate.composition
        console.print(
            f"Composition: dialogue {c.dialogue}%, description {c.description}%, inner {c.inner}% "
            f"({gate.dialogue_segments} dialogue segments)"
        )
        for v in gate.violations():
            console.print(f"[red]- {v}[/red]")


def main():
    cli()


if __name__ == '__main__':
    main()
