"""Module for publishing bus events to a Redis channel."""

import json
import logging
from typing import Any, Dict, Optional, Union

import redis

logger = logging.getLogger(__name__)


def str_to_bool(value: str) -> bool:
    """Convert REDIS_SSL env variable to boolean."""
    return value.lower() in ("true", "1", "yes")


class RedisPublisher:
    """Publishes JSON encoded events on a Redis pub/sub channel."""

    def __init__(
        self,
        host: str,
        port: int,
        password: Optional[str],
        ssl: Union[str, bool],
        channel: str,
        socket_timeout: Optional[float] = 2.0,
    ) -> None:
        """
        Initialize a connection to the Redis server.

        Args:
            host (str): The hostname or IP address of the Redis server.
            port (int): The port number of the Redis server.
            password (Optional[str]): Redis password, if any.
            ssl (Union[str, bool]): Whether to use TLS.
            channel (str): Channel every event is published on.
            socket_timeout (Optional[float]): Seconds allowed for connecting and
                for each command before the publish fails.
        """
        ssl = str_to_bool(ssl) if isinstance(ssl, str) else ssl
        self.channel = channel
        self.handler = redis.Redis(
            host=host,
            port=port,
            password=password,
            ssl=ssl,
            db=0,
            ssl_cert_reqs=None,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """Publish an event and return the number of receivers."""
        message = json.dumps({"topic": topic, "payload": payload}, default=str)
        receivers: int = self.handler.publish(self.channel, message)  # type: ignore
        logger.debug("Published %s to %s (%s receivers)", topic, self.channel, receivers)
        return receivers
