import copy
import json
import os
import tempfile

os.environ.setdefault("SPLICE_LOG_FILE", os.path.join(tempfile.gettempdir(), "splice-tests.log"))

import pytest

from agent.config import DEFAULT_CFG
from agent.errors import CompletionError, SandboxUnavailable
from agent.llm import CompletionStream
from tools.manifest import build_manifest
from tools.sandbox import CommandResult

PROJECT_ROOT = "/home/user/app"


class FakeSandbox:
    """In-memory project. exit_codes maps a command prefix to its exit code."""
    project_root = PROJECT_ROOT

    def __init__(self, files=None):
        self.files = dict(files or {})
        self.writes = []
        self.deletes = []
        self.commands = []
        self.exit_codes = {}
        self.available = True
        self.fail_after_writes = None

    def _check(self):
        if not self.available:
            raise SandboxUnavailable("sandbox went away")

    def write_file(self, path, content):
        self._check()
        if self.fail_after_writes is not None and len(self.writes) >= self.fail_after_writes:
            self.available = False
            raise SandboxUnavailable("sandbox went away")
        self.files[path] = content
        self.writes.append(path)

    def delete_file(self, path):
        self._check()
        self.files.pop(path, None)
        self.deletes.append(path)

    def list_files(self):
        self._check()
        return build_manifest([(p, c, 0.0) for p, c in sorted(self.files.items())], PROJECT_ROOT)

    def run_command(self, cmd, timeout=None):
        self._check()
        self.commands.append(cmd)
        code = next((c for prefix, c in self.exit_codes.items() if cmd.startswith(prefix)), 0)
        return CommandResult(stdout="", stderr="npm ERR! boom" if code else "", exit_code=code)


class FakeProvider:
    """
    Scripted completion provider.

    classify   text returned for every classifier prompt (None → malformed)
    generate   list of responses for generation / continuation prompts, in
               order; each is a string, a list of chunks, a CompletionStream
               or an exception to raise
    """
    name = "fake"

    def __init__(self, classify=None, generate=None):
        self.classify = classify
        self.generate = list(generate or [])
        self.prompts = []
        self.classify_calls = 0

    @staticmethod
    def is_classifier(prompt):
        return prompt.startswith("Classify this edit request") or prompt.startswith('Request: "')

    def stream_completion(self, prompt, model_id, max_tokens):
        self.prompts.append(prompt)
        if self.is_classifier(prompt):
            self.classify_calls += 1
            if isinstance(self.classify, Exception):
                raise self.classify
            return CompletionStream.from_chunks([self.classify if self.classify is not None else "not json"])
        if not self.generate:
            raise CompletionError("no scripted response left")
        r = self.generate.pop(0)
        if isinstance(r, Exception):
            raise r
        if isinstance(r, CompletionStream):
            return r
        if isinstance(r, str):
            r = chunked(r, 7)
        return CompletionStream.from_chunks(list(r))


def chunked(text, size):
    return [text[i:i + size] for i in range(0, len(text), size)]


def classification(kind, confidence=0.9, queries=("header",), target=""):
    return json.dumps({
        "type": kind,
        "target": target or kind.lower(),
        "confidence": confidence,
        "queries": [{"term": q, "role": "component"} for q in queries],
    })


HEADER_PROJECT = {
    "package.json": json.dumps({
        "name": "site",
        "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0"},
        "devDependencies": {"vite": "^5.0.0", "@vitejs/plugin-react": "^4.0.0"},
    }, indent=2),
    "index.html": '<div id="root"></div>\n<script type="module" src="/src/main.jsx"></script>\n',
    "vite.config.js": "import { defineConfig } from 'vite'\nimport react from '@vitejs/plugin-react'\nexport default defineConfig({ plugins: [react()] })\n",
    "src/main.jsx": (
        "import React from 'react'\n"
        "import ReactDOM from 'react-dom/client'\n"
        "import App from './App'\n"
        "import './index.css'\n\n"
        "ReactDOM.createRoot(document.getElementById('root')).render(<App />)\n"
    ),
    "src/App.jsx": (
        "import Header from './components/Header'\n"
        "import Footer from './components/Footer'\n\n"
        "export default function App() {\n"
        "  return (\n"
        "    <div>\n"
        "      <Header />\n"
        "      <Footer />\n"
        "    </div>\n"
        "  )\n"
        "}\n"
    ),
    "src/components/Header.tsx": (
        "import './styles.css'\n\n"
        "export default function Header() {\n"
        "  return <header className=\"header\">My Site</header>\n"
        "}\n"
    ),
    "src/components/styles.css": ".header {\n  color: black;\n  padding: 1rem;\n}\n",
    "src/components/Footer.jsx": "export default function Footer() {\n  return <footer>(c) 2024</footer>\n}\n",
    "src/index.css": "body {\n  margin: 0;\n}\n",
    "src/utils/format.ts": "export const format = (s: string) => s.trim()\n",
}

HEADER_BLUE_RESPONSE = """Making the header blue.
<edit path="src/components/styles.css">
<<<<<<< SEARCH
.header {
  color: black;
=======
.header {
  color: blue;
>>>>>>> REPLACE
</edit>
<file path="src/components/Header.tsx">
import './styles.css'

export default function Header() {
  return <header className="header header--blue">My Site</header>
}
</file>
Done."""


@pytest.fixture
def header_files():
    return dict(HEADER_PROJECT)


@pytest.fixture
def sandbox(header_files):
    return FakeSandbox(header_files)


@pytest.fixture
def manifest(sandbox):
    return sandbox.list_files()


@pytest.fixture
def cfg():
    c = copy.deepcopy(DEFAULT_CFG)
    c["pipeline"]["restart_command"] = "npm run dev"
    return c
