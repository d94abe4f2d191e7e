"""
Command-line interface for Soundpost administration.

Publishes articles, manages categories and repairs stored durations
using Click, printing results with Rich.
"""

import logging
import mimetypes
import sqlite3
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from shared.config import ServerConfig
from shared.constants import FALLBACK_DURATION_SECONDS
from shared.database import DatabaseManager
from shared.models import Category
from media_tool.audio import AudioProcessor, UploadValidationError
from media_tool.media_service import MediaServiceError
from media_tool.service_factory import MediaServiceFactory
from media_tool.uploader import ArticleUploader, IncomingFile

console = Console()


def _load_config(ctx) -> ServerConfig:
    try:
        return ServerConfig.from_env(ctx.obj.get('env_file'))
    except ValueError as e:
        raise click.ClickException(str(e))


def _database(ctx) -> DatabaseManager:
    return DatabaseManager(str(_load_config(ctx).resolved_database_path))


def _incoming(path: str) -> IncomingFile:
    file_path = Path(path)
    mime_type = mimetypes.guess_type(file_path.name)[0] or AudioProcessor.guess_mime_type(file_path.name)
    return IncomingFile(data=file_path.read_bytes(), filename=file_path.name, mime_type=mime_type)


@click.group()
@click.version_option(version="1.0.0")
@click.option('--env-file', type=click.Path(dir_okay=False), help='Path to a .env file')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
@click.pass_context
def cli(ctx, env_file, verbose):
    """
    🎙️ Soundpost Admin Tool

    Publish audio articles and manage categories.
    """
    ctx.ensure_object(dict)
    ctx.obj['env_file'] = env_file
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@cli.command(name='init-db')
@click.pass_context
def init_db(ctx):
    """Create the database schema."""
    db = _database(ctx)
    console.print(f"[green]✓ Database ready at[/green] [cyan]{db.db_path}[/cyan]")


@cli.command(name='create-category')
@click.argument('name')
@click.option('--description', '-d', default=None, help='Category description')
@click.pass_context
def create_category(ctx, name, description):
    """Create a category."""
    if not name.strip():
        raise click.BadParameter("Category name is required")
    db = _database(ctx)
    try:
        category = db.create_category(Category.create(name, description))
    except sqlite3.IntegrityError:
        raise click.ClickException(f"Category already exists: {name}")
    console.print(f"[green]✓ Created category[/green] {category.name} [dim]({category.slug}, {category.id})[/dim]")


@cli.command(name='list')
@click.option('--category', '-c', default=None, help='Only list one category')
@click.option('--all', 'include_unpublished', is_flag=True, help='Include unpublished articles')
@click.option('--limit', default=50, show_default=True)
@click.pass_context
def list_articles(ctx, category, include_unpublished, limit):
    """List articles and categories."""
    db = _database(ctx)
    articles, total = db.list_articles(category=category, limit=limit, page=1,
                                       published_only=not include_unpublished)

    table = Table(title=f"Articles ({len(articles)} of {total})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold white")
    table.add_column("Category", style="green")
    table.add_column("Duration", style="magenta")
    table.add_column("Plays", justify="right")
    table.add_column("Flags", style="yellow")
    for a in articles:
        flags = ", ".join(f for f, on in (("featured", a.featured), ("draft", not a.published)) if on)
        table.add_row(a.id, a.title, a.category, f"{a.duration}s", str(a.plays), flags)
    console.print(table)

    categories = Table(title="Categories")
    categories.add_column("Name", style="green")
    categories.add_column("Slug", style="dim")
    categories.add_column("Published", justify="right")
    for c in db.list_categories():
        categories.add_row(c.name, c.slug, str(db.count_published(c.name)))
    console.print(categories)


@cli.command()
@click.argument('audio', type=click.Path(exists=True, dir_okay=False))
@click.argument('thumbnail', type=click.Path(exists=True, dir_okay=False))
@click.option('--title', required=True)
@click.option('--description', required=True)
@click.option('--content', default=None, help='Body text (defaults to the description)')
@click.option('--category', required=True)
@click.option('--featured', is_flag=True)
@click.option('--draft', is_flag=True, help='Store without publishing')
@click.pass_context
def publish(ctx, audio, thumbnail, title, description, content, category, featured, draft):
    """Upload AUDIO and THUMBNAIL and create an article."""
    config = _load_config(ctx)
    db = DatabaseManager(str(config.resolved_database_path))
    uploader = ArticleUploader(db, MediaServiceFactory.create(config))
    fields = {
        "title": title,
        "description": description,
        "content": content or description,
        "category": category,
        "featured": featured,
        "published": not draft,
    }
    console.print(f"Uploading to [cyan]{MediaServiceFactory.get_provider_name(config.media_provider)}[/cyan]...")
    try:
        with console.status("Uploading..."):
            article = uploader.create_article(fields, _incoming(audio), _incoming(thumbnail))
    except (UploadValidationError, MediaServiceError) as e:
        raise click.ClickException(str(e))

    console.print(Panel.fit(
        f"[bold]{article.title}[/bold]\n\n"
        f"ID: [cyan]{article.id}[/cyan]\n"
        f"Duration: {article.duration}s\n"
        f"Audio: {article.audio_url}",
        title=" Published ",
        border_style="green",
    ))


@cli.command()
@click.argument('article_id')
@click.confirmation_option(prompt='Delete this article and its media?')
@click.pass_context
def delete(ctx, article_id):
    """Delete an article and its media."""
    config = _load_config(ctx)
    uploader = ArticleUploader(DatabaseManager(str(config.resolved_database_path)),
                               MediaServiceFactory.create(config))
    try:
        deleted = uploader.delete_article(article_id)
    except MediaServiceError as e:
        raise click.ClickException(str(e))
    if not deleted:
        raise click.ClickException("Article not found")
    console.print("[green]✓ Article and associated files deleted[/green]")


@cli.command(name='fix-duration')
@click.argument('article_id')
@click.option('--file', 'local_file', type=click.Path(exists=True, dir_okay=False),
              help='Measure this local copy instead of the remote audio')
@click.pass_context
def fix_duration(ctx, article_id, local_file):
    """Re-measure an article's duration and store it."""
    db = _database(ctx)
    article = db.get_article(article_id)
    if article is None:
        raise click.ClickException("Article not found")
    if not article.audio_url and not local_file:
        raise click.ClickException("Article has no audio URL")

    old = article.duration
    if local_file:
        duration = AudioProcessor.measure_duration(local_file) or AudioProcessor.estimate_duration_from_size(
            Path(local_file).stat().st_size)
    else:
        with console.status("Probing remote audio..."):
            duration = AudioProcessor.probe_remote_duration(article.audio_url)
    if duration <= 0:
        duration = FALLBACK_DURATION_SECONDS

    db.update_duration(article_id, duration)
    console.print(f"[green]✓[/green] {article.title}: {old}s → [bold]{duration}s[/bold]")


@cli.command()
@click.pass_context
def recount(ctx):
    """Recompute and store per-category article counts."""
    db = _database(ctx)
    counts = db.refresh_category_counts()
    for name, count in counts.items():
        console.print(f"  {name}: [bold]{count}[/bold]")
    console.print(f"[green]✓ Updated {len(counts)} categories[/green]")


@cli.command()
@click.pass_context
def token(ctx):
    """Print an admin bearer token for scripting against the API."""
    from shared.auth import TokenManager
    config = _load_config(ctx)
    tokens = TokenManager(config.secret_key, config.admin_username, config.admin_password)
    console.print(tokens.issue(config.admin_username), soft_wrap=True)
