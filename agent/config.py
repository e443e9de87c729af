# agent/config.py — Splice v1
"""
Runtime configuration.

Config: .splice/config.json  (auto-created on first load, hot-reloaded on
every load_config() call, so edits take effect on the next turn).

Two sections:
  provider keys   which completion backend to talk to and how
  "pipeline"      tuning knobs for intent, search, context and apply
"""
from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Optional

from agent.logger import log

# ── Defaults ──────────────────────────────────────────────────────────────────
DEFAULT_PIPELINE: dict = {
    "token_budget":         6000,
    "max_tokens":           8192,
    "confidence_threshold": 0.5,
    "decay":                0.8,
    "match_weights":        {"exact": 1.0, "casefold": 0.6, "adjacent": 0.3},
    "chars_per_token":      4,
    "structure_reserve":    0.15,
    "template_files": [
        "package.json", "index.html", "vite.config.js", "vite.config.ts",
        "tailwind.config.js", "tailwind.config.ts", "src/main.jsx",
        "src/main.tsx", "src/App.jsx", "src/App.tsx", "src/index.css",
    ],
    "config_patterns": [
        "package.json", "vite.config.*", "tailwind.config.*",
        "postcss.config.*", "tsconfig*.json", "next.config.*", ".env*",
    ],
    "project_root":         "/home/user/app",
    "max_continuations":    1,
    "completion_timeout":   180,
    "install_command":      "npm install {packages}",
    "restart_command":      "pkill -f vite; nohup npm run dev > /tmp/vite.log 2>&1 &",
    "command_timeout":      300,
    "max_turns":            20,
    "summary_max_chars":    1200,
}

DEFAULT_CFG: dict = {
    "provider":    "openai",
    "model":       "gpt-4o-mini",
    "api_key":     "",
    "base_url":    "",
    "timeout":     180,
    "retries":     2,
    "_presets": {
        "local":     {"base_url": "http://127.0.0.1:8080/v1",                        "model": "local"},
        "ollama":    {"base_url": "http://127.0.0.1:11434/v1",                       "model": "qwen2.5-coder:7b"},
        "openai":    {"base_url": "https://api.openai.com/v1",                       "model": "gpt-4o-mini"},
        "anthropic": {"base_url": "https://api.anthropic.com",                       "model": "claude-3-5-sonnet-20240620"},
        "groq":      {"base_url": "https://api.groq.com/openai/v1",                  "model": "moonshotai/kimi-k2-instruct"},
        "google":    {"base_url": "https://generativelanguage.googleapis.com/v1beta/openai", "model": "gemini-1.5-pro"},
    },
    "pipeline": DEFAULT_PIPELINE,
}

API_KEY_ENV = {
    "openai":    "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "groq":      "GROQ_API_KEY",
    "google":    "GOOGLE_API_KEY",
}


def config_path() -> Path:
    return Path(os.getenv("SPLICE_CONFIG", Path(os.getcwd()) / ".splice" / "config.json"))


def _merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: Optional[Path] = None) -> dict:
    """Read config from disk, creating it with defaults when missing."""
    p = Path(path) if path else config_path()
    if not p.exists():
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(json.dumps(DEFAULT_CFG, indent=2), encoding="utf-8")
            log.info(f"[cyan]Created config: {p}[/cyan]")
        except OSError as e:
            log.warning(f"Cannot create config at {p} ({e}) — using defaults.")
        return copy.deepcopy(DEFAULT_CFG)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning(f"Config read error ({e}) — using defaults.")
        return copy.deepcopy(DEFAULT_CFG)
    return _merge(DEFAULT_CFG, raw)


def save_config(cfg: dict, path: Optional[Path] = None) -> None:
    """Write config. Takes effect on the next load_config() call."""
    p = Path(path) if path else config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(cfg, indent=2), encoding="utf-8")
    log.info(f"[green]Config saved: {cfg.get('provider')}/{cfg.get('model')}[/green]")


def pipeline_settings(cfg: Optional[dict] = None) -> dict:
    """Pipeline knobs with defaults filled in."""
    if cfg is None:
        return copy.deepcopy(DEFAULT_PIPELINE)
    return _merge(DEFAULT_PIPELINE, cfg.get("pipeline") or {})


def provider_settings(cfg: dict, provider: str) -> dict:
    """base_url / api_key / timeout for one provider, falling back to presets and env."""
    preset = (cfg.get("_presets") or {}).get(provider, {})
    same = cfg.get("provider") == provider
    base_url = (cfg.get("base_url") if same else "") or preset.get("base_url", "")
    api_key = (cfg.get("api_key") if same else "") or os.getenv(API_KEY_ENV.get(provider, ""), "")
    return {
        "base_url": base_url,
        "api_key":  api_key,
        "model":    (cfg.get("model") if same else "") or preset.get("model", ""),
        "timeout":  int(cfg.get("timeout", 180)),
    }
