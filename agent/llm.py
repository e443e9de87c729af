# agent/llm.py — Splice v1
"""
Completion providers: OpenAI-compatible (OpenAI / Groq / Google / local
llama.cpp / Ollama) and Anthropic, both streamed over SSE with requests.

  select_provider(model_id, cfg) → provider     resolved once per turn
  provider.stream_completion(prompt, model_id, max_tokens) → CompletionStream
  complete(provider, prompt, model_id)          joined text, one-shot calls

A CompletionStream is a finite, non-restartable iterator of text chunks.
Once exhausted, .finish_reason is "stop", "length" (output cap hit) or
None when the transport never said.

Model switching: save_config() writes immediately and the next turn picks
it up, no restart needed.
"""
from __future__ import annotations

import json
import re
import time
from typing import Callable, Iterator, Optional, Protocol, Tuple

import requests

from agent.config import load_config, provider_settings
from agent.errors import CompletionError
from agent.logger import log

SYSTEM_PROMPT = (
    "You are Splice, an expert front-end engineer editing a live React/Vite "
    "project. You change only what the request needs and never invent files "
    "you were not asked to touch. Always emit complete file bodies or exact "
    "SEARCH/REPLACE edits in the requested tag format. "
    "For JSON output: respond with raw JSON only, no markdown fences."
)

KNOWN_PROVIDERS = ("openai", "anthropic", "groq", "google", "local", "ollama")

_ANTHROPIC_STOP = {"end_turn": "stop", "stop_sequence": "stop", "max_tokens": "length"}


# ── JSON cleaning ──────────────────────────────────────────────────────────────

def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        inner = lines[1:] if lines[0].startswith("```") else lines
        if inner and inner[-1].strip() in ("```", "```json"):
            inner = inner[:-1]
        text = "\n".join(inner).strip()
    return text


def extract_json(raw: str) -> str:
    raw = _strip_fences(raw)
    m   = re.search(r"(\{[\s\S]*\})", raw)
    return m.group(1) if m else raw


# ── Stream wrapper ─────────────────────────────────────────────────────────────

class CompletionStream:
    """Iterator of text chunks with the transport's finish reason attached."""

    def __init__(self, chunks: Callable[["CompletionStream"], Iterator[str]],
                 response: Optional[requests.Response] = None):
        self.finish_reason: Optional[str] = None
        self._response = response
        self._iter = chunks(self)
        self._closed = False

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        if self._closed:
            raise StopIteration
        try:
            return next(self._iter)
        except StopIteration:
            self.close()
            raise

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            self._response.close()

    @classmethod
    def from_chunks(cls, chunks, finish_reason: Optional[str] = "stop") -> "CompletionStream":
        """Wrap an in-memory chunk list (replays, tests, offline providers)."""
        def gen(stream: "CompletionStream") -> Iterator[str]:
            yield from chunks
            stream.finish_reason = finish_reason
        return cls(gen)


class CompletionProvider(Protocol):
    name: str

    def stream_completion(self, prompt: str, model_id: str, max_tokens: int) -> CompletionStream:
        ...


# ── Transport ──────────────────────────────────────────────────────────────────

def _open_stream(url: str, headers: dict, payload: dict, timeout: int, retries: int) -> requests.Response:
    """POST with stream=True; retries only until the response starts."""
    last_err = "unknown"
    for attempt in range(retries + 1):
        try:
            r = requests.post(url, headers=headers, json=payload, stream=True, timeout=timeout)
        except requests.Timeout:
            last_err = "timeout"
            log.warning(f"LLM timeout (attempt {attempt + 1})")
            time.sleep(2 ** attempt)
            continue
        except requests.RequestException as e:
            last_err = str(e)
            log.error(f"LLM error attempt {attempt + 1}: {e}")
            time.sleep(1 + attempt)
            continue

        if r.status_code == 404:
            r.close()
            raise CompletionError(
                f"404 from {url}\n"
                "Check base_url in .splice/config.json\n"
                "llama.cpp: http://127.0.0.1:8080/v1\n"
                "Ollama:    http://127.0.0.1:11434/v1"
            )
        if r.status_code == 429 or r.status_code >= 500:
            last_err = f"HTTP {r.status_code}"
            r.close()
            log.warning(f"LLM {last_err} (attempt {attempt + 1})")
            time.sleep(1 + attempt)
            continue
        if r.status_code >= 400:
            body = r.text[:300]
            r.close()
            raise CompletionError(f"HTTP {r.status_code} from {url}: {body}")
        return r

    raise CompletionError(f"LLM unreachable after {retries + 1} attempts: {last_err}")


def _sse_data(response: requests.Response) -> Iterator[dict]:
    """Decoded JSON payloads of `data:` lines."""
    # event streams are UTF-8; without a charset requests would assume latin-1
    response.encoding = "utf-8"
    try:
        for line in response.iter_lines(decode_unicode=True):
            if not line or not line.startswith("data:"):
                continue
            data = line[5:].strip()
            if data == "[DONE]":
                return
            try:
                yield json.loads(data)
            except ValueError:
                log.debug(f"SSE skip non-JSON line: {data[:80]}")
    except requests.RequestException as e:
        raise CompletionError(f"stream interrupted: {e}") from e


def model_name(model_id: str) -> str:
    """'anthropic/claude-3-5-sonnet' → 'claude-3-5-sonnet'; vendor paths like 'moonshotai/kimi' stay."""
    prefix, sep, rest = (model_id or "").partition("/")
    if sep and prefix.lower() in KNOWN_PROVIDERS:
        return rest
    return model_id or ""


# ── Providers ──────────────────────────────────────────────────────────────────

class OpenAICompatProvider:
    def __init__(self, name: str, base_url: str, api_key: str = "",
                 timeout: int = 180, retries: int = 2, temperature: float = 0.15):
        self.name = name
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.retries = retries
        self.temperature = temperature

    def stream_completion(self, prompt: str, model_id: str, max_tokens: int) -> CompletionStream:
        url = self.base_url.rstrip("/") + "/chat/completions"
        headers: dict = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "model":       model_name(model_id),
            "messages":    [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user",   "content": prompt},
            ],
            "max_tokens":  int(max_tokens),
            "temperature": self.temperature,
            "stream":      True,
        }
        response = _open_stream(url, headers, payload, self.timeout, self.retries)

        def chunks(stream: CompletionStream) -> Iterator[str]:
            for event in _sse_data(response):
                if "error" in event:
                    raise CompletionError(f"{self.name} stream error: {event['error']}")
                choices = event.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                text = (choice.get("delta") or {}).get("content")
                if text:
                    yield text
                if choice.get("finish_reason"):
                    stream.finish_reason = choice["finish_reason"]

        return CompletionStream(chunks, response)


class AnthropicProvider:
    name = "anthropic"

    def __init__(self, api_key: str, base_url: str = "https://api.anthropic.com",
                 timeout: int = 180, retries: int = 2):
        self.api_key = api_key
        self.base_url = base_url or "https://api.anthropic.com"
        self.timeout = timeout
        self.retries = retries

    def stream_completion(self, prompt: str, model_id: str, max_tokens: int) -> CompletionStream:
        if not self.api_key:
            raise CompletionError("Anthropic requires api_key in .splice/config.json or ANTHROPIC_API_KEY")
        url = self.base_url.rstrip("/") + "/v1/messages"
        headers = {
            "x-api-key":         self.api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type":      "application/json",
        }
        payload = {
            "model":      model_name(model_id),
            "max_tokens": int(max_tokens),
            "system":     SYSTEM_PROMPT,
            "messages":   [{"role": "user", "content": prompt}],
            "stream":     True,
        }
        response = _open_stream(url, headers, payload, self.timeout, self.retries)

        def chunks(stream: CompletionStream) -> Iterator[str]:
            for event in _sse_data(response):
                kind = event.get("type")
                if kind == "content_block_delta":
                    delta = event.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield delta["text"]
                elif kind == "message_delta":
                    stop = (event.get("delta") or {}).get("stop_reason")
                    if stop:
                        stream.finish_reason = _ANTHROPIC_STOP.get(stop, stop)
                elif kind == "error":
                    raise CompletionError(f"anthropic stream error: {event.get('error')}")

        return CompletionStream(chunks, response)


# ── Selection ──────────────────────────────────────────────────────────────────

def resolve_provider_name(model_id: str, default: str = "openai") -> str:
    """Pure mapping from a model id to a provider name."""
    mid = (model_id or "").strip().lower()
    prefix, sep, _ = mid.partition("/")
    if sep and prefix in KNOWN_PROVIDERS:
        return prefix
    if mid.startswith("claude"):
        return "anthropic"
    if mid.startswith(("gpt", "o1", "o3", "o4")):
        return "openai"
    if mid.startswith("gemini"):
        return "google"
    return default


def select_provider(model_id: str, cfg: Optional[dict] = None) -> CompletionProvider:
    cfg = cfg if cfg is not None else load_config()
    name = resolve_provider_name(model_id, cfg.get("provider", "openai"))
    settings = provider_settings(cfg, name)
    retries = int(cfg.get("retries", 2))
    log.debug(f"Provider for '{model_id}': {name} @ {settings['base_url']}")
    if name == "anthropic":
        return AnthropicProvider(
            api_key=settings["api_key"], base_url=settings["base_url"],
            timeout=settings["timeout"], retries=retries,
        )
    return OpenAICompatProvider(
        name=name, base_url=settings["base_url"], api_key=settings["api_key"],
        timeout=settings["timeout"], retries=retries,
    )


def default_model(cfg: Optional[dict] = None) -> str:
    cfg = cfg if cfg is not None else load_config()
    return f"{cfg.get('provider', 'openai')}/{cfg.get('model', '')}"


def complete(provider: CompletionProvider, prompt: str, model_id: str,
             max_tokens: int = 1024) -> Tuple[str, Optional[str]]:
    """Join a whole stream: (text, finish_reason)."""
    stream = provider.stream_completion(prompt, model_id, max_tokens)
    try:
        text = "".join(stream)
    finally:
        stream.close()
    return text, stream.finish_reason


def get_model_info(model_id: Optional[str] = None, cfg: Optional[dict] = None) -> dict:
    """Provider, bare model name and endpoint a turn with this model id would use."""
    cfg = cfg if cfg is not None else load_config()
    model_id = model_id or default_model(cfg)
    provider = resolve_provider_name(model_id, cfg.get("provider", "openai"))
    return {
        "provider": provider,
        "model":    model_name(model_id),
        "base_url": provider_settings(cfg, provider)["base_url"],
    }
