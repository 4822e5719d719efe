# src/keypool_app/key_manager.py

import asyncio
import logging
import os
import time

from dotenv import get_key, load_dotenv, set_key
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.text import Text

from gemini_keypool import (
    CredentialPool,
    CredentialValidationError,
    InvokeError,
    NoCredentialsError,
    PoolSettings,
    mask_credential,
    open_store,
)
from gemini_keypool.core.constants import MAX_POOL_SIZE
from gemini_keypool.utils.paths import get_data_file

from .messages import describe_failure, describe_rotation
from .pool_viewer import build_pool_table

console = Console()


def _get_env_file():
    return get_data_file(".env")


def clear_screen(subtitle: str = "API Key Manager"):
    """
    Cross-platform terminal clear with header display.

    Uses native OS commands instead of ANSI escape sequences:
    - Windows (conhost & Windows Terminal): cls
    - Unix-like systems (Linux, Mac): clear
    """
    os.system("cls" if os.name == "nt" else "clear")
    console.print(
        Panel(
            f"[bold cyan]{subtitle}[/bold cyan]",
            title="--- Gemini Key Pool ---",
        )
    )


def ensure_env_defaults():
    """
    Ensures the .env file exists and names a store backend.
    """
    env_file = _get_env_file()
    if not env_file.is_file():
        env_file.touch()
        console.print(f"Creating a new [bold yellow]{env_file.name}[/bold yellow] file...")

    if get_key(str(env_file), "KEYPOOL_STORE_BACKEND") is None:
        console.print(
            f"Adding default [bold cyan]KEYPOOL_STORE_BACKEND[/bold cyan] to "
            f"[bold yellow]{env_file.name}[/bold yellow]..."
        )
        set_key(str(env_file), "KEYPOOL_STORE_BACKEND", "json")


def _notify_rotation(from_index, to_index, classified):
    console.print(
        f"[bold yellow]:arrows_counterclockwise: "
        f"{describe_rotation(to_index, classified.is_quota)}[/bold yellow]"
    )


def _display_pool_summary(pool: CredentialPool):
    if pool.size == 0:
        console.print(
            Panel(
                "[bold yellow]No API keys added.[/bold yellow]\n"
                "[dim]Add at least one API key to start generating content.[/dim]",
                title="Keys",
            )
        )
        return
    console.print(
        f"[bold]{pool.size}/{MAX_POOL_SIZE} keys[/bold] "
        f"(using #{pool.preferred_index + 1})"
    )
    console.print(build_pool_table(pool))


def _ask_key_number(pool: CredentialPool, action: str):
    """Returns a 0-based index, or None to go back."""
    choice = Prompt.ask(
        Text.from_markup(
            f"\n[bold]Select key to {action} or type [red]'b'[/red] to go back[/bold]"
        ),
        choices=[str(i) for i in range(1, pool.size + 1)] + ["b"],
        show_choices=False,
    )
    if choice.lower() == "b":
        return None
    return int(choice) - 1


async def _add_key_menu(pool: CredentialPool):
    clear_screen("Add API Key")
    _display_pool_summary(pool)

    raw = Prompt.ask(
        Text.from_markup("\n[bold]Paste API key[/bold] [dim](AIza..., 39 characters)[/dim]"),
        password=True,
    )
    try:
        key = await pool.add_credential(raw)
    except CredentialValidationError as e:
        console.print(
            Panel(describe_failure(e, pool.size), style="bold red", title="Error", expand=False)
        )
    else:
        console.print(
            Panel(
                f"Added [yellow]{mask_credential(key, style='full')}[/yellow] as key #{pool.size}",
                style="bold green",
                title="Success",
                expand=False,
            )
        )


async def _remove_key_menu(pool: CredentialPool):
    clear_screen("Remove API Key")
    if pool.size == 0:
        console.print("[bold yellow]No API keys configured.[/bold yellow]")
        return
    _display_pool_summary(pool)

    idx = _ask_key_number(pool, "remove")
    if idx is None:
        return

    masked = mask_credential(pool.credentials[idx], style="full")
    if not Confirm.ask(f"[bold red]Remove[/bold red] key #{idx + 1} ([yellow]{masked}[/yellow])?"):
        console.print("[dim]Removal cancelled.[/dim]")
        return

    await pool.remove_credential(idx)
    console.print(
        Panel(f"Removed [yellow]{masked}[/yellow]", style="bold green", title="Success", expand=False)
    )


async def _reset_health_menu(pool: CredentialPool):
    clear_screen("Reset Key Health")
    if pool.size == 0:
        console.print("[bold yellow]No API keys configured.[/bold yellow]")
        return
    _display_pool_summary(pool)

    idx = _ask_key_number(pool, "reset")
    if idx is None:
        return

    credential = pool.credentials[idx]
    await pool.reset_health(credential)
    console.print(
        f"[bold green]Health reset for key #{idx + 1} "
        f"({mask_credential(credential, style='full')})[/bold green]"
    )


async def _test_call(pool: CredentialPool, settings: PoolSettings):
    """Run one list_models call through the pool, rotating as needed."""
    from gemini_keypool.providers.gemini_provider import GeminiProvider

    clear_screen("Test Call")
    provider = GeminiProvider(settings)

    started = time.time()
    try:
        with console.status("Calling Gemini...", spinner="dots"):
            models = await pool.invoke(provider.list_models)
    except (NoCredentialsError, InvokeError) as e:
        console.print(
            Panel(describe_failure(e, pool.size), style="bold red", title="Error", expand=False)
        )
        return

    console.print(
        Panel(
            f"Key #{pool.preferred_index + 1} works: {len(models)} models visible "
            f"({time.time() - started:.2f}s)",
            style="bold green",
            title="Success",
            expand=False,
        )
    )


async def main():
    """An interactive CLI tool to manage the key pool."""
    ensure_env_defaults()
    load_dotenv(_get_env_file())
    settings = PoolSettings.from_env()
    pool = CredentialPool.load(
        open_store(settings),
        rotation_delay=settings.rotation_delay,
        on_rotate=_notify_rotation,
    )

    while True:
        clear_screen()
        _display_pool_summary(pool)

        console.print(
            Panel(
                Text.from_markup(
                    "1. Add API Key\n"
                    "2. Remove API Key\n"
                    "3. Reset Key Health\n"
                    "4. Test Call"
                ),
                title="Choose action",
                style="bold blue",
            )
        )

        action = Prompt.ask(
            Text.from_markup(
                "[bold]Please select an option or type [red]'q'[/red] to quit[/bold]"
            ),
            choices=["1", "2", "3", "4", "q"],
            show_choices=False,
        )

        if action.lower() == "q":
            break

        if action == "1":
            await _add_key_menu(pool)
        elif action == "2":
            await _remove_key_menu(pool)
        elif action == "3":
            await _reset_health_menu(pool)
        elif action == "4":
            await _test_call(pool, settings)

        console.print("\n[dim]Press Enter to return to main menu...[/dim]")
        input()


def run_key_manager():
    """Entry point for the key manager."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    try:
        asyncio.run(main())
        clear_screen()
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Exiting key manager.[/bold yellow]")


if __name__ == "__main__":
    run_key_manager()
