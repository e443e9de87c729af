# cli/commands.py — Splice v1
"""
Terminal commands.

  splice edit "<request>" [--model M] [--session S] [--root DIR]
  splice manifest [--root DIR]          # structure summary of the project
  splice history [--session S]          # conversation digest
  splice ui [--root DIR]                # textual TUI
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

_console = Console()

_STATUS_STYLE = {
    "APPLIED":    "green",
    "SKIPPED":    "yellow",
    "FAILED":     "red",
    "INCOMPLETE": "magenta",
}


def _find_project_root() -> str:
    """Walk up from cwd to the first directory holding package.json or .splice."""
    p = Path.cwd()
    for _ in range(8):
        if (p / "package.json").exists() or (p / ".splice").exists():
            return str(p)
        if p.parent == p:
            break
        p = p.parent
    return str(Path.cwd())


def _root(args: argparse.Namespace) -> str:
    root = os.path.abspath(args.root or _find_project_root())
    os.environ.setdefault("SPLICE_CONFIG", str(Path(root) / ".splice" / "config.json"))
    return root


def _sandbox_factory(root: str):
    from agent.config import load_config, pipeline_settings
    from tools.sandbox import LocalSandbox

    settings = pipeline_settings(load_config())

    def factory(_session_id: str):
        return LocalSandbox(root, project_root=settings["project_root"],
                            command_timeout=int(settings["command_timeout"]))
    return factory


def build_manager(root: str):
    from agent.session import SessionManager
    return SessionManager(
        sandbox_factory=_sandbox_factory(root),
        state_dir=Path(root) / ".splice" / "sessions",
    )


# ─────────────────────────────────────────────────────────────────────────────
# edit
# ─────────────────────────────────────────────────────────────────────────────

def _render_event(event) -> None:
    from agent.session import TurnPhase

    d = event.data
    if event.phase is TurnPhase.INTENT_DETERMINED:
        flag = " (conservative)" if d["conservative"] else ""
        _console.print(f"[magenta]Intent:[/magenta] {d['type']} @ {d['confidence']:.2f}{flag}")
        _console.print(f"[dim]queries: {', '.join(d['queries'])}[/dim]")
    elif event.phase is TurnPhase.CONTEXT_BUILT:
        note = " [yellow](summary only)[/yellow]" if d["degraded"] else ""
        _console.print(f"[cyan]Context:[/cyan] {len(d['files'])} file(s), "
                       f"{d['total_cost']}/{d['budget']} tokens{note}")
    elif event.phase is TurnPhase.FILE_APPLIED:
        style = _STATUS_STYLE.get(d["status"], "white")
        msg = f" [dim]{d['message']}[/dim]" if d["message"] else ""
        _console.print(f"  [{style}]{d['status']:<10}[/{style}] {d['action']:<7} {d['path']}{msg}")
    elif event.phase is TurnPhase.PACKAGES_INSTALLED:
        ok = "[green]ok[/green]" if d["success"] else "[red]failed[/red]"
        _console.print(f"[cyan]Packages:[/cyan] {' '.join(d['packages'])} → {ok}")
    elif event.phase is TurnPhase.DONE:
        result = d["result"]
        if result.restart.restart:
            _console.print(f"[cyan]Dev server restart:[/cyan] {'; '.join(result.restart.reasons)}")
        for w in result.warnings:
            _console.print(f"[yellow]warning:[/yellow] {w}")
        _console.print("[bold green]Done.[/bold green]")
    elif event.phase is TurnPhase.FAILED:
        _console.print(f"[bold red]Failed:[/bold red] {d['error']}")


def cmd_edit(args: argparse.Namespace) -> int:
    from agent.llm import get_model_info
    from agent.session import TurnPhase

    root = _root(args)
    manager = build_manager(root)
    info = get_model_info(args.model, manager.cfg)
    _console.print(f"[dim]{info['provider']} · {info['model']}[/dim]")
    final = None
    for event in manager.run_turn(args.request, model_id=args.model, session_id=args.session):
        _render_event(event)
        final = event.phase
    return 0 if final is TurnPhase.DONE else 1


# ─────────────────────────────────────────────────────────────────────────────
# manifest / history
# ─────────────────────────────────────────────────────────────────────────────

def cmd_manifest(args: argparse.Namespace) -> int:
    from agent.errors import SandboxUnavailable
    from tools.manifest import structure_summary

    root = _root(args)
    try:
        manifest = _sandbox_factory(root)("cli").list_files()
    except SandboxUnavailable as e:
        _console.print(f"[red]{e}[/red]")
        return 1

    if args.files:
        table = Table(title=f"{len(manifest)} files")
        table.add_column("path")
        table.add_column("role")
        table.add_column("bytes", justify="right")
        table.add_column("imported by", justify="right")
        for path in manifest.paths():
            entry = manifest[path]
            table.add_row(path, entry.role, str(entry.size), str(len(entry.imported_by)))
        _console.print(table)
    else:
        _console.print(structure_summary(manifest), markup=False, highlight=False)
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    root = _root(args)
    manager = build_manager(root)
    state = manager.get(args.session).state
    summary = state.summarize()
    if not summary.turn_count:
        _console.print("[dim]No turns recorded for this session.[/dim]")
        return 0

    table = Table(title=f"session {args.session}")
    table.add_column("#", justify="right")
    table.add_column("type")
    table.add_column("request")
    table.add_column("applied", justify="right")
    table.add_column("phase")
    for t in state.recent_turns(args.last):
        phase_style = "green" if t.success else "red"
        table.add_row(str(t.index), t.intent_type, t.request[:50], str(len(t.applied())),
                      f"[{phase_style}]{t.phase}[/{phase_style}]")
    _console.print(table)
    _console.print(summary.text, markup=False, highlight=False)
    return 0


def cmd_ui(args: argparse.Namespace) -> int:
    from tui.app import SpliceUI

    root = _root(args)
    SpliceUI(manager=build_manager(root), session_id=args.session, model_id=args.model).run()
    return 0


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI entry point
# ─────────────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="splice",
        description="Splice — surgical AI edits for live web projects",
    )
    sub = p.add_subparsers(dest="command")

    def common(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--root", default=None, help="Project directory (default: nearest package.json)")
        sp.add_argument("--session", default="default", help="Session id")

    # edit
    ep = sub.add_parser("edit", help="Apply one natural-language change")
    ep.add_argument("request")
    ep.add_argument("--model", default=None, help='e.g. "anthropic/claude-3-5-sonnet-20240620"')
    common(ep)

    # manifest
    mp = sub.add_parser("manifest", help="Show the project structure summary")
    mp.add_argument("--files", action="store_true", help="Table of every file instead")
    common(mp)

    # history
    hp = sub.add_parser("history", help="Show the conversation digest")
    hp.add_argument("--last", type=int, default=10, help="Turns to list")
    common(hp)

    # ui
    up = sub.add_parser("ui", help="Launch the terminal UI")
    up.add_argument("--model", default=None)
    common(up)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args   = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    dispatch = {
        "edit":     cmd_edit,
        "manifest": cmd_manifest,
        "history":  cmd_history,
        "ui":       cmd_ui,
    }
    fn = dispatch.get(args.command)
    if fn is None:
        parser.print_help()
        return 2
    return fn(args)


if __name__ == "__main__":
    sys.exit(main())
