"""
Shuffle server: serves a worker's intermediate files to reducers over gRPC.

The service has a single unary method registered through a generic handler,
so no generated stubs are needed. Requests are JSON objects
(``{"file_name": "<job_id>/map-0-reduce-1.txt"}``), responses are the raw
file bytes.
"""

import os
import json
import time
import logging
import argparse
from concurrent import futures

import grpc

from category_mr.common.errors import InfrastructureError

logger = logging.getLogger(__name__)

SERVICE_NAME = "category_mr.Shuffle"
FETCH_METHOD = "FetchIntermediateFile"
FETCH_PATH = f"/{SERVICE_NAME}/{FETCH_METHOD}"

MAX_MESSAGE_LENGTH = 100 * 1024 * 1024


def encode_request(request: dict) -> bytes:
    return json.dumps(request).encode('utf-8')


def decode_request(data: bytes) -> dict:
    return json.loads(data.decode('utf-8'))


def passthrough(data: bytes) -> bytes:
    return data


class ShuffleServicer:
    """Looks up intermediate files below one root directory"""

    def __init__(self, intermediate_root: str):
        self.intermediate_root = os.path.realpath(intermediate_root)

    def FetchIntermediateFile(self, request, context):
        file_name = request.get('file_name', '') if isinstance(request, dict) else ''
        path = os.path.realpath(os.path.join(self.intermediate_root, file_name))

        if not file_name or not path.startswith(self.intermediate_root + os.sep):
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, f"Invalid file name: {file_name!r}")
        if not os.path.isfile(path):
            context.abort(grpc.StatusCode.NOT_FOUND, f"Intermediate file not found: {file_name}")

        with open(path, 'rb') as f:
            data = f.read()
        logger.debug(f"Served {file_name} ({len(data)} bytes)")
        return data


class ShuffleServer:
    """gRPC server wrapping a ShuffleServicer"""

    def __init__(self, intermediate_root: str, max_workers: int = 4):
        self.intermediate_root = intermediate_root
        self.servicer = ShuffleServicer(intermediate_root)
        self.server = grpc.server(
            futures.ThreadPoolExecutor(max_workers=max_workers),
            options=[
                ('grpc.max_send_message_length', MAX_MESSAGE_LENGTH),
                ('grpc.max_receive_message_length', MAX_MESSAGE_LENGTH),
            ]
        )
        handler = grpc.method_handlers_generic_handler(SERVICE_NAME, {
            FETCH_METHOD: grpc.unary_unary_rpc_method_handler(
                self.servicer.FetchIntermediateFile,
                request_deserializer=decode_request,
                response_serializer=passthrough,
            ),
        })
        self.server.add_generic_rpc_handlers((handler,))
        self.port = None

    def start(self, port: int = 0, host: str = 'localhost') -> int:
        """Bind and start serving; returns the bound port"""
        bound = self.server.add_insecure_port(f'{host}:{port}')
        if not bound:
            raise InfrastructureError(f"Cannot bind shuffle server to {host}:{port}")
        self.server.start()
        self.port = bound
        logger.info(f"Shuffle server serving {self.intermediate_root} on {host}:{bound}")
        return bound

    @property
    def address(self) -> str:
        return f"localhost:{self.port}"

    def stop(self, grace: float = 0):
        self.server.stop(grace)
        logger.info("Shuffle server stopped")


def main():
    """Serve a shared directory's intermediate files until interrupted"""
    from category_mr.common.config import JobConfig

    config = JobConfig()
    parser = argparse.ArgumentParser(description='Serve intermediate map output to reducers')
    parser.add_argument('--root', default=config.intermediate_root, help='Intermediate file root')
    parser.add_argument('--port', type=int, default=config.shuffle_port or 50052, help='Port to listen on')
    parser.add_argument('--host', default='[::]', help='Interface to bind')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    server = ShuffleServer(args.root)
    server.start(args.port, args.host)
    try:
        while True:
            time.sleep(86400)
    except KeyboardInterrupt:
        server.stop(0)


if __name__ == '__main__':
    main()
