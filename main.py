#!/usr/bin/env python3
# ============================================================
# DBSage - Database AI Assistant
# main.py - Application Entry Point
# ============================================================
#
# Usage:
#   dbsage                  → Launch full TUI (split-panel)
#   dbsage simple           → Launch simple line-mode CLI (no TUI)
#   dbsage connections      → List saved connections
#   dbsage version          → Show version info
#
# Prerequisites:
#   1. OPENAI_API_KEY exported or set in .env
#      (OPENAI_BASE_URL / OPENAI_MODEL for compatible endpoints)
#   2. A reachable PostgreSQL or MySQL server to add with /add
# ============================================================

import sys
import os
import click
from loguru import logger

# Add project root to path
sys.path.insert(0, os.path.dirname(__file__))

from utils.logger import setup_logger
from config import app_config, openai_config
from core.errors import StartupError
from core.guidance import GuidanceType, derive_guidance


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """DBSage - Database AI Assistant CLI"""
    if ctx.invoked_subcommand is None:
        launch_tui()


@cli.command()
def tui():
    """Launch the full split-panel TUI interface (default)."""
    launch_tui()


@cli.command()
def simple():
    """Launch the simple single-panel CLI interface."""
    launch_simple_cli()


@cli.command()
def version():
    """Display DBSage version information."""
    show_version()


@cli.command()
def connections():
    """List saved database connections without opening them."""
    list_connections()


# ── Launch Functions ──────────────────────────────────────────

def launch_tui():
    """Start the full Textual TUI application."""
    setup_logger(app_config.get_log_file(), app_config.log_level)
    logger.info(f"Starting DBSage v{app_config.version} (TUI mode)")

    session = _build_session()

    from ui.tui import DBSageApp
    app = DBSageApp(session)
    app.run()


def launch_simple_cli():
    """
    Simple CLI mode - no Textual TUI, just a prompt_toolkit shell.
    Useful for environments where TUI doesn't work or for debugging.
    """
    setup_logger(app_config.get_log_file(), app_config.log_level)
    logger.info(f"Starting DBSage v{app_config.version} (simple mode)")

    session = _build_session()

    from simple_cli import SimpleCLI
    cli_app = SimpleCLI(session)
    cli_app.run()


def show_version():
    """Display version and configuration info."""
    print(f"""
╔══════════════════════════════════════════════════════╗
║            DBSage - Database AI Assistant            ║
╠══════════════════════════════════════════════════════╣
║  Version    : {app_config.version:<38}║
║  Endpoint   : {openai_config.base_url:<38}║
║  LLM Model  : {openai_config.model:<38}║
║  Home       : {str(app_config.home_dir):<38}║
╚══════════════════════════════════════════════════════╝
""")


def list_connections():
    """Print the saved connections, most recently used first."""
    from core.registry import ConnectionRegistry

    try:
        registry = ConnectionRegistry(app_config.get_connections_file())
    except StartupError as e:
        print(f"❌ {e}")
        sys.exit(1)

    configs = registry.sorted_by_last_used()
    if not configs:
        print("No database connections configured.")
        print("Start dbsage and use /add <name> <url> to add one.")
        return

    current = registry.current_name()
    print(f"\nSaved connections ({registry.config_file}):\n")
    for cfg in configs:
        marker = "*" if cfg.name == current else " "
        print(f"{marker} {cfg.name} [{cfg.type.value}] ({cfg.address}) - last used {cfg.last_used or 'never'}")
    print()


# ── Pre-flight Checks ─────────────────────────────────────────

def _build_session():
    """Run start-up checks and wire the session; exits non-zero on failure."""
    try:
        _check_environment()
        from core.session import Session
        return Session.build(openai_config, app_config)
    except StartupError as e:
        logger.error(f"Start-up failed: {e}")
        print(f"❌ {e}")
        sys.exit(1)


def _check_environment():
    """Run environment checks before launching."""
    guidance = derive_guidance(
        api_key_present=openai_config.has_api_key,
        has_connection=True,
        transcript_empty=False,
    )
    if guidance is not None and guidance.type == GuidanceType.API_KEY_MISSING:
        print(f"⚠️  {guidance.title}")
        print(f"   {guidance.message}")
        for line in guidance.instructions:
            print(f"   → {line}")
        raise StartupError("OPENAI_API_KEY is not set")


# ── Entry Point ───────────────────────────────────────────────

if __name__ == "__main__":
    cli()
