"""Quest Manager: dev launcher. Starts the backend in watch mode."""

import argparse
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = int(os.getenv("BACKEND_PORT", "13013"))


def main():
    parser = argparse.ArgumentParser(description="Quest Manager dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Replace stored quests and permissions with demo data")
    args = parser.parse_args()

    data_dir = (args.data_dir or Path(os.getenv("DATA_DIR", "data"))).resolve()

    if args.demo:
        from quest_manager.demo import create_demo_data
        from quest_manager.storage import Storage
        gm = os.getenv("QUEST_MANAGER_USER", "gm")
        graph = create_demo_data(Storage(data_dir), gm)
        print(f"Created {len(graph)} demo quests in {data_dir}")

    # The reloader imports backend.app in a fresh process; it reads DATA_DIR.
    os.environ["DATA_DIR"] = str(data_dir)
    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    uvicorn.run("backend.app:app", host=HOST, port=BACKEND_PORT,
                reload=True, reload_dirs=[str(ROOT / "backend"), str(ROOT / "quest_manager")])


if __name__ == "__main__":
    main()
