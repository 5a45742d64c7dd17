from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn

from ..models import RunStatus


def create_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
    )


def describe_status(status: RunStatus) -> str:
    text = f"Chapter {status.chapter_number}: {status.state.value}"
    if status.attempt:
        text += f" (attempt {status.attempt})"
    if status.step:
        text += f" - {status.step}"
    return text
