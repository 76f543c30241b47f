import os
import sys

import uvicorn

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    print(f"🚀 Starting Coinfolio Sim at http://localhost:{port}")

    # Run from the project root so `coinsim` and `coinlib` import cleanly
    os.chdir(os.path.dirname(os.path.abspath(__file__)))
    sys.path.insert(0, os.getcwd())
    uvicorn.run("coinsim.main:app", host=host, port=port, reload="--reload" in sys.argv)
