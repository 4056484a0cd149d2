from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from . import config
from .models import Settings
from .service import DictationService


def _ask_api_key(console: Console, service: DictationService) -> Optional[str]:
    console.print("[bold]Gemini API Key[/bold]")
    console.print()
    console.print("murmur sends your recordings to Gemini for transcription.")
    console.print("(Create a key at https://aistudio.google.com/apikey)")
    console.print()

    while True:
        api_key = Prompt.ask("API Key (leave empty to skip)", password=True, default="", show_default=False)
        if not api_key:
            return None
        with console.status("Checking key..."):
            outcome = service.transcriber.test_connection(api_key)
        if outcome.success:
            console.print("[green]Key accepted.[/green]")
            return api_key
        console.print(f"[red]{outcome.error}[/red]")
        if not Confirm.ask("Try another key?", default=True):
            return None


def run_onboarding(service: DictationService, console: Optional[Console] = None) -> Settings:
    console = console or Console()

    welcome_text = Text()
    welcome_text.append("Welcome to murmur!\n\n", style="bold cyan")
    welcome_text.append("Dictate anywhere, keep what you said, find it later.\n", style="dim")
    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    if not config.is_first_launch() and not Confirm.ask(
        "Setup was already completed. Run it again?", default=False
    ):
        return config.load_settings()

    settings = config.load_settings()
    api_key = _ask_api_key(console, service)

    console.print()
    console.print("[bold]Dictation[/bold]")
    console.print()
    settings.hotkey = Prompt.ask("Hotkey to start and stop dictation", default=settings.hotkey)
    settings.sound_enabled = Confirm.ask("Play a sound when recording starts and stops?", default=settings.sound_enabled)
    settings.theme = Prompt.ask("Theme", choices=["light", "dark"], default=settings.theme)

    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()
    summary.add_row("API key:", "provided" if api_key else "not set")
    summary.add_row("Hotkey:", settings.hotkey)
    summary.add_row("Sounds:", "on" if settings.sound_enabled else "off")
    summary.add_row("Theme:", settings.theme)

    console.print()
    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if not Confirm.ask("Save this configuration?", default=True):
        console.print("[yellow]Configuration not saved. Run 'murmur setup' to try again.[/yellow]")
        return settings

    config.save_settings(settings)
    if api_key:
        result = service.set_api_key(api_key)
        if not result.ok:
            console.print(f"[red]Could not store the API key: {result.error}[/red]")
    settings = config.complete_setup()

    console.print("[bold green]Setup complete![/bold green]")
    console.print()
    console.print("[bold]To transcribe a file and keep it, run:[/bold]")
    console.print("  [cyan]murmur transcribe --save <audio.wav>[/cyan]")
    console.print("[bold]To search your history, run:[/bold]")
    console.print("  [cyan]murmur search <words>[/cyan]")
    console.print()
    return settings
