import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.live import Live
from rich.panel import Panel
from rich.text import Text
import logging
import sys
import threading
import time

# Try to import engine, handle missing libmpv
try:
    from player.engine import EventQueue, MpvMediaResource
    MPV_AVAILABLE = True
except OSError:
    MPV_AVAILABLE = False

from player.controller import (
    PlaybackController,
    PlaybackState,
    PolledScheduler,
    QualityTier,
    StaticCapabilityProvider,
    format_time,
)
from player.library import ArticleLibrary, LibraryError
from player.settings import PlayerSettings, QUALITY_CHOICES
from shared.constants import DEFAULT_API_URL, PLAYBACK_RATES

console = Console()

KEY_HELP = "[p] play/pause  [b] -15s  [f] +30s  [s] speed  [+/-] volume  [l/m/h] quality  [n] next  [q] quit"


def _library(settings: PlayerSettings, api_url=None) -> ArticleLibrary:
    return ArticleLibrary(api_url or settings.api_url or DEFAULT_API_URL)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help="Show debug logging.")
def cli(verbose):
    """🎧 Soundpost Player"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@cli.command(name='list')
@click.option('--category', '-c', help="Only show one category.")
@click.option('--page', default=1, show_default=True)
@click.option('--api-url', help="Override the API base URL.")
def list_articles(category, page, api_url):
    """List published articles."""
    settings = PlayerSettings()
    lib = _library(settings, api_url)
    try:
        result = lib.list_articles(category=category, page=page)
    except LibraryError as e:
        console.print(f"[red]{e}[/red]")
        return

    tracks = result["tracks"]
    if not tracks:
        console.print("[yellow]No articles found.[/yellow]")
        return

    table = Table(title=f"Articles (page {result['page']}/{result['total_pages']}, {result['total']} total)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold white")
    table.add_column("Category", style="green")
    table.add_column("Duration", style="magenta")

    for t in tracks:
        table.add_row(t.id, t.title, t.category, format_time(t.stored_duration_seconds))

    console.print(table)


def _render(controller: PlaybackController, index: int, total: int) -> Panel:
    session = controller.session
    track = controller.current_track
    status = Text()
    if track is not None:
        status.append(f"{track.title}\n", style="bold green")
        status.append(f"{track.category}\n\n", style="cyan")
    if session is not None:
        duration = session.resolved_duration or 0
        percent = min(100, (session.current_time / duration) * 100) if duration else 0
        status.append(f"{format_time(session.current_time)} ", style="cyan")
        status.append("━" * int(percent / 2), style="blue")
        status.append(" " * (50 - int(percent / 2)), style="grey50")
        status.append(f" {format_time(duration)}\n", style="cyan")
        state = controller.state.value + (" (buffering)" if session.buffering else "")
        status.append(
            f"{state}  •  {controller.playback_rate}x  •  vol {int(controller.volume * 100)}%"
            f"  •  {session.tier.value} quality\n",
            style="yellow",
        )
    if controller.message is not None:
        status.append(f"\n{controller.message.text}\n", style="bold red")
    status.append(f"\n{KEY_HELP}", style="dim")
    return Panel(status, title=f"Now Playing ({index + 1}/{total})")


def _read_keys(commands: "EventQueue", handler):
    """Read single-letter commands from stdin (one per line) and queue them for the main loop."""
    for line in sys.stdin:
        key = line.strip().lower()[:1]
        if key:
            commands.post(handler, key)


@cli.command()
@click.argument('article_id', required=False)
@click.option('--category', '-c', help="Play a category instead of a single article.")
@click.option('--api-url', help="Override the API base URL.")
def play(article_id, category, api_url):
    """Play an article, or the latest articles when no ID is given."""
    if not MPV_AVAILABLE:
        console.print(Panel.fit(
            "[red bold]Missing System Dependency: libmpv[/red bold]\n\n"
            "The player requires the [cyan]libmpv[/cyan] library to work.\n\n"
            "Please install it:\n"
            "• Ubuntu/Debian: [green]sudo apt install libmpv2[/green]\n"
            "• Fedora: [green]sudo dnf install mpv-libs[/green]\n"
            "• Arch: [green]sudo pacman -S mpv[/green]",
            border_style="red"
        ))
        return

    settings = PlayerSettings()
    lib = _library(settings, api_url)
    try:
        if article_id:
            playlist = [lib.get_track(article_id)]
        else:
            playlist = lib.list_articles(category=category)["tracks"]
    except LibraryError as e:
        console.print(f"[red]{e}[/red]")
        return

    if not playlist:
        console.print("[yellow]Nothing to play.[/yellow]")
        return

    events = EventQueue()
    scheduler = PolledScheduler()
    controller = PlaybackController(
        resource_factory=lambda: MpvMediaResource(events),
        capability_provider=StaticCapabilityProvider(),
        scheduler=scheduler,
        telemetry=lib,
        settings=settings,
    )

    position = {"index": 0, "running": True}

    def load_current():
        track = playlist[position["index"]]
        controller.load_track(track, autoplay=True)
        resume = settings.resume_position(track.id)
        if resume:
            controller.session.resume_position = resume

    def advance(_track=None):
        if position["index"] + 1 < len(playlist):
            position["index"] += 1
            load_current()
        else:
            position["running"] = False

    def on_track_end(track):
        if settings.autoplay:
            advance()
        else:
            position["running"] = False

    def handle_key(key):
        if key == 'p':
            controller.toggle_play()
        elif key == 'b':
            controller.skip_back()
        elif key == 'f':
            controller.skip_forward()
        elif key == 's':
            controller.cycle_speed()
        elif key == '+':
            controller.set_volume(controller.volume + 0.1)
        elif key == '-':
            controller.set_volume(controller.volume - 0.1)
        elif key in ('l', 'm', 'h'):
            controller.set_quality({'l': QualityTier.LOW, 'm': QualityTier.MEDIUM, 'h': QualityTier.HIGH}[key])
        elif key == 'n':
            advance()
        elif key == 'q':
            position["running"] = False

    controller.add_track_end_callback(on_track_end)
    threading.Thread(target=_read_keys, args=(events, handle_key), daemon=True).start()
    load_current()

    try:
        with Live(refresh_per_second=4, console=console) as live:
            while position["running"]:
                events.drain()
                scheduler.run_due()
                live.update(_render(controller, position["index"], len(playlist)))
                if controller.state == PlaybackState.ERROR and controller.message and controller.message.sticky:
                    break
                time.sleep(0.1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
    finally:
        controller.destroy()


@cli.command(name='settings')
@click.option('--volume', type=click.FloatRange(0.0, 1.0), help="Volume between 0 and 1.")
@click.option('--rate', type=click.Choice([str(r) for r in PLAYBACK_RATES]), help="Playback rate.")
@click.option('--quality', type=click.Choice(list(QUALITY_CHOICES) + ['auto']), help="Quality override.")
@click.option('--autoplay/--no-autoplay', default=None, help="Play the next article automatically.")
@click.option('--api-url', help="API base URL, e.g. http://localhost:5000/api")
def settings_command(volume, rate, quality, autoplay, api_url):
    """Show or change player settings."""
    settings = PlayerSettings()
    changes = {}
    if volume is not None:
        changes["volume"] = volume
    if rate is not None:
        changes["playback_rate"] = float(rate)
    if quality is not None:
        changes["quality"] = None if quality == 'auto' else quality
    if autoplay is not None:
        changes["autoplay"] = autoplay
    if api_url is not None:
        changes["api_url"] = api_url
    if changes:
        settings.update(**changes)
        console.print("[green]✓ Settings saved.[/green]")

    table = Table(title=f"Player settings ({settings.path})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="bold white")
    for key, value in settings.to_dict().items():
        if key != "version":
            table.add_row(key, "auto" if key == "quality" and value is None else str(value))
    console.print(table)


if __name__ == '__main__':
    cli()
