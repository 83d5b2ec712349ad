"""Movie Games — dev launcher. Starts the API server in watch mode."""

import argparse
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "8000")


def main():
    parser = argparse.ArgumentParser(description="Movie Games dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--no-reload", action="store_true",
                        help="Run without the auto-reloader")
    args = parser.parse_args()

    # Build env for the server so it picks up the same data dir
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    cmd = [sys.executable, "-m", "uvicorn", "backend.app:app", "--host", HOST, "--port", PORT]
    if not args.no_reload:
        cmd.append("--reload")

    print(f"Starting backend on http://localhost:{PORT} ...")
    proc = subprocess.Popen(cmd, cwd=ROOT, env=env)
    try:
        proc.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
        proc.terminate()
        proc.wait()


if __name__ == "__main__":
    main()
