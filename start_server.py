"""
Swarm Engine Server Launcher

Starts the task board API and notification WebSocket.

Usage:
    python start_server.py
    python start_server.py --port 8550
    python start_server.py --host 0.0.0.0 --port 9000
"""

import argparse
import sys


def main():
    parser = argparse.ArgumentParser(description="Swarm Engine server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8550, help="Port to bind (default: 8550)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    args = parser.parse_args()

    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is required. Install it with:")
        print("  pip install uvicorn[standard]")
        sys.exit(1)

    print(f"""
Swarm Engine
  Task board API:  http://{args.host}:{args.port}/api/tasks
  Graph:           http://{args.host}:{args.port}/api/orchestrator/graph
  Notifications:   ws://{args.host}:{args.port}/ws
""")

    uvicorn.run(
        "ui.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
