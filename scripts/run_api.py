"""
Start the markup API under uvicorn.

Usage:
    python scripts/run_api.py [--host HOST] [--port PORT] [--no-reload]
"""
import argparse
import os
import subprocess
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
src_path = project_root / 'src'
sys.path.insert(0, str(src_path))

from markup_tool.config.settings import get_settings
from markup_tool.rules.compile_rules import compile_rules


def main():
    parser = argparse.ArgumentParser(description="Run the markup API")
    parser.add_argument('--host', default='0.0.0.0')
    parser.add_argument('--port', default=os.environ.get('MARKUP_TOOL_PORT', '8000'))
    parser.add_argument('--no-reload', dest='reload', action='store_false')
    args = parser.parse_args()

    settings = get_settings()
    if not settings.compiled_rules.exists():
        print("No compiled rules found, compiling rules.csv first...")
        success, _, _ = compile_rules(settings.rules_csv, settings.compiled_rules)
        if not success:
            sys.exit(1)

    # uvicorn runs in a child process, so src has to be on its PYTHONPATH
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(src_path), env.get("PYTHONPATH")]))
    env.setdefault("MARKUP_TOOL_ROOT", str(project_root.resolve()))

    command = [
        sys.executable, "-m", "uvicorn",
        "markup_tool.api.main:app",
        "--host", args.host,
        "--port", str(args.port),
        "--log-level", settings.log_level.lower(),
    ]
    if args.reload:
        command.append("--reload")

    print(f"Starting Markup Tool API on {args.host}:{args.port} ({settings.max_workers} pricing workers)...")
    try:
        subprocess.run(command, env=env, cwd=project_root)
    except KeyboardInterrupt:
        print("\nAPI stopped.")


if __name__ == "__main__":
    main()
