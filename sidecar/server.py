import os
import socket

import uvicorn

HOST = os.getenv("HOST", "127.0.0.1")
UVICORN_LOG_LEVEL = os.getenv("UVICORN_LOG_LEVEL", "warning")


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((HOST, 0))
        return sock.getsockname()[1]


def start_server(app, port: int):
    # The editor launches this process and reads the port from stdout.
    print(f"PORT:{port}", flush=True)
    uvicorn.run(app, host=HOST, port=port, log_level=UVICORN_LOG_LEVEL)
