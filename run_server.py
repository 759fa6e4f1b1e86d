import argparse

import uvicorn

from leadflow import config

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Start the Leadflow engine")
    parser.add_argument("--host", type=str, default=config.HOST, help="Host to bind to")
    parser.add_argument("--port", type=int, default=config.PORT, help="Port to listen on")
    args = parser.parse_args()

    # A single process: the task queue lives in memory.
    uvicorn.run(
        "leadflow.main:app",
        host=args.host,
        port=args.port,
        log_level="info",
        workers=1,
    )
