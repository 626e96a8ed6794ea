"""
gRPC client for fetching intermediate files from a shuffle server
"""

import logging
import threading
from typing import Dict

import grpc

from category_mr.common.errors import InfrastructureError
from category_mr.worker.shuffle_server import (
    FETCH_PATH, MAX_MESSAGE_LENGTH, encode_request, passthrough
)

logger = logging.getLogger(__name__)


class ShuffleClient:
    """Fetches intermediate files, one cached channel per worker address"""

    def __init__(self, timeout: float = 15, connect_timeout: float = 10):
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._channels: Dict[str, grpc.Channel] = {}
        self._lock = threading.Lock()

    def _channel(self, address: str) -> grpc.Channel:
        with self._lock:
            channel = self._channels.get(address)
            if channel is not None:
                return channel
            channel = grpc.insecure_channel(
                address,
                options=[
                    ('grpc.max_send_message_length', MAX_MESSAGE_LENGTH),
                    ('grpc.max_receive_message_length', MAX_MESSAGE_LENGTH),
                ]
            )
            try:
                grpc.channel_ready_future(channel).result(timeout=self.connect_timeout)
            except grpc.FutureTimeoutError:
                channel.close()
                raise InfrastructureError(
                    f"Failed to connect to shuffle server at {address} within {self.connect_timeout}s")
            self._channels[address] = channel
            return channel

    def fetch(self, address: str, file_name: str) -> bytes:
        """
        Fetch one intermediate file from a remote worker

        Raises:
            InfrastructureError: If the worker is unreachable or the file is unavailable
        """
        fetch = self._channel(address).unary_unary(
            FETCH_PATH,
            request_serializer=encode_request,
            response_deserializer=passthrough,
        )
        try:
            return fetch({'file_name': file_name}, timeout=self.timeout)
        except grpc.RpcError as e:
            logger.error(f"gRPC error fetching {file_name} from {address}: {e.details()}")
            raise InfrastructureError(f"Shuffle failure from {address}: {e.details()}") from e

    def close(self):
        with self._lock:
            for channel in self._channels.values():
                channel.close()
            self._channels.clear()
