#!/usr/bin/env python3
"""
Family Stars Server Startup Script

Runs database migrations, then starts the API with uvicorn.
"""

import os
import subprocess
import sys
from pathlib import Path


def setup_environment():
    """Make the src layout importable for the server subprocess."""
    project_root = Path(__file__).parent.absolute()
    src_path = project_root / "src"

    if not src_path.exists():
        print(f"Error: src directory not found at {src_path}")
        print("Make sure you're running this script from the project root directory")
        sys.exit(1)

    src_str = str(src_path)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)

    current_pythonpath = os.environ.get("PYTHONPATH", "")
    if src_str not in current_pythonpath:
        os.environ["PYTHONPATH"] = (
            f"{src_str}{os.pathsep}{current_pythonpath}" if current_pythonpath else src_str
        )

    os.environ.setdefault("FAMILY_STARS_DEV_MODE", "true")


def run_migrations() -> bool:
    """Run database migrations to ensure schema is up to date."""
    print("Running database migrations...")
    try:
        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
        )
        print("Database migrations completed successfully")
        return True
    except subprocess.CalledProcessError as e:
        print(f"Migration failed: {e}")
        print(f"Stdout: {e.stdout}")
        print(f"Stderr: {e.stderr}")
        return False


def start_server() -> bool:
    """Start the FastAPI server using uvicorn."""
    from family_stars.config import get_config

    server = get_config().server
    print(f"Starting Family Stars at http://{server.host}:{server.port}")
    print(f"API docs: http://{server.host}:{server.port}/docs")
    print("Press Ctrl+C to stop the server")

    command = [
        sys.executable, "-m", "uvicorn",
        "family_stars.main:app",
        "--host", server.host,
        "--port", str(server.port),
    ]
    if server.auto_reload:
        command.append("--reload")

    try:
        subprocess.run(command, check=True, env=os.environ.copy())
    except KeyboardInterrupt:
        print("\nServer stopped by user")
    except subprocess.CalledProcessError as e:
        print(f"Server failed to start: {e}")
        return False

    return True


def main():
    setup_environment()

    if not run_migrations():
        print("Cannot start server without database migrations")
        sys.exit(1)

    if not start_server():
        sys.exit(1)


if __name__ == "__main__":
    main()
