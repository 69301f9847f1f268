"""Character Realm - dev launcher. Starts the API server in watch mode."""

import argparse
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))


def main():
    parser = argparse.ArgumentParser(description="Character Realm dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Clean sessions/groups and seed demo characters and users")
    args = parser.parse_args()

    data_dir = (args.data_dir or ROOT / "data").resolve()
    if args.demo:
        from backend.demo import create_demo_data
        from character_realm.storage import Storage
        create_demo_data(Storage(data_dir))

    # The reloader imports backend.app in a fresh process; hand it the data dir
    os.environ["DATA_DIR"] = str(data_dir)

    print(f"Starting backend on http://localhost:{PORT} ...")
    uvicorn.run("backend.app:app", host=HOST, port=PORT, reload=True)


if __name__ == "__main__":
    main()
