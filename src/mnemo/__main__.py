"""Entry point: python -m mnemo [chat|export PATH|import PATH]

- No args / "chat": Interactive CLI REPL
- "export PATH":    Write memories + settings to a JSON file
- "import PATH":    Load memories + settings from a JSON file
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

from mnemo.config import MnemoConfig, load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_app(config: MnemoConfig, with_engine: bool = True):
    from mnemo.core import Mnemo

    app = Mnemo(config)
    if with_engine:
        from mnemo.engines.anthropic_api import AnthropicAPIEngine

        app.set_engine(
            AnthropicAPIEngine(
                model=config.generation.model,
                max_tokens=config.generation.max_output_tokens,
                timeout=config.engine.timeout,
            )
        )
    return app


def _run_cli() -> None:
    """Interactive CLI REPL mode."""
    config = load_config()
    _setup_logging(config.log_level)

    from mnemo.connectors.cli import CLIConnector

    app = _build_app(config)
    app.add_connector(CLIConnector(app))

    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        pass


def _run_export(path: Path) -> None:
    config = load_config()
    _setup_logging(config.log_level)
    app = _build_app(config, with_engine=False)
    try:
        path.write_text(
            json.dumps(app.export_data(), indent=2, ensure_ascii=False), encoding="utf-8"
        )
    except OSError as e:
        print(f"Failed to export: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Exported to {path}")


def _run_import(path: Path) -> None:
    config = load_config()
    _setup_logging(config.log_level)
    app = _build_app(config, with_engine=False)
    try:
        app.import_data(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as e:
        print(f"Failed to import data: {e}", file=sys.stderr)
        sys.exit(1)
    print("Data imported successfully.")


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "chat"

    if cmd in ("chat", "repl"):
        _run_cli()
    elif cmd in ("export", "import") and len(sys.argv) > 2:
        path = Path(sys.argv[2]).expanduser()
        if cmd == "export":
            _run_export(path)
        else:
            _run_import(path)
    else:
        print("Usage: python -m mnemo [chat|export PATH|import PATH]")
        print("  chat        : Interactive CLI REPL (default)")
        print("  export PATH : Write memories and settings to JSON")
        print("  import PATH : Load memories and settings from JSON")
        sys.exit(1)


if __name__ == "__main__":
    main()
