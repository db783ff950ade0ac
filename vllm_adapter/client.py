"""gRPC client for the fmaas GenerationService.

Requests and responses cross this boundary as plain dicts using the proto
field names. Each call accepts an optional ``asyncio.Event`` signal; setting
it cancels the in-flight RPC and raises AbortError.
"""
import asyncio
import functools
import json
import logging
import os
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Tuple

import grpc
from dotenv import load_dotenv
from google.protobuf import json_format
from pydantic import BaseModel, Field

from vllm_adapter.errors import AbortError

logger = logging.getLogger(__name__)

# Must be resolvable from an entry on sys.path (see grpc.protos_and_services).
GENERATION_PROTO_PATH = "vllm_adapter/proto/generation.proto"

DEFAULT_CHANNEL_OPTIONS: Dict[str, Any] = {
    "grpc.keepalive_time_ms": 10_000,
    "grpc.keepalive_timeout_ms": 5_000,
    "grpc.max_receive_message_length": -1,
    "grpc.max_send_message_length": -1,
}


@functools.lru_cache(maxsize=None)
def load_generation_protos() -> Tuple[Any, Any]:
    """Load (protos, services) modules for generation.proto."""
    return grpc.protos_and_services(GENERATION_PROTO_PATH)


class ClientConfig(BaseModel):
    """Connection settings for the generation service.

    Certificates are PEM contents, not file paths.
    """
    url: str = Field(..., min_length=1)
    root_cert: Optional[str] = None
    cert_chain: Optional[str] = None
    private_key: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_CHANNEL_OPTIONS))

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build a config from IBM_VLLM_* environment variables.

        A .env file in the working directory is loaded first, without
        overriding variables that are already set.
        """
        load_dotenv()
        url = os.getenv("IBM_VLLM_URL")
        if not url:
            raise ValueError(
                "Environment variable 'IBM_VLLM_URL' is not set. "
                "Please set it to the host:port of the generation service."
            )
        return cls(
            url=url,
            root_cert=os.getenv("IBM_VLLM_ROOT_CERT") or None,
            cert_chain=os.getenv("IBM_VLLM_CERT_CHAIN") or None,
            private_key=os.getenv("IBM_VLLM_PRIVATE_KEY") or None,
        )

    def cache_key(self) -> str:
        return self.model_dump_json()


def _encode(value: Optional[str]) -> Optional[bytes]:
    return value.encode() if value else None


def create_channel(config: ClientConfig) -> grpc.aio.Channel:
    """Open a channel, using TLS when a root certificate is configured."""
    options: List[Tuple[str, Any]] = list(config.options.items())
    if config.root_cert:
        credentials = grpc.ssl_channel_credentials(
            root_certificates=_encode(config.root_cert),
            private_key=_encode(config.private_key),
            certificate_chain=_encode(config.cert_chain),
        )
        return grpc.aio.secure_channel(config.url, credentials, options=options)
    return grpc.aio.insecure_channel(config.url, options=options)


def _watch_signal(call: grpc.aio.Call, signal: Optional[asyncio.Event]) -> Optional[asyncio.Task]:
    """Cancel ``call`` once ``signal`` is set."""
    if signal is None:
        return None

    async def _cancel_on_signal() -> None:
        await signal.wait()
        call.cancel()

    return asyncio.ensure_future(_cancel_on_signal())


class GrpcGenerationClient:
    """Async client for the four GenerationService RPCs.

    A ``grpc.aio`` channel only works on the event loop it was opened on, so
    the client opens one channel per running loop on first use.
    """

    def __init__(self, channel_factory: Callable[[], grpc.aio.Channel]):
        protos, services = load_generation_protos()
        self._channel_factory = channel_factory
        self._protos = protos
        self._services = services
        self._bindings: Dict[asyncio.AbstractEventLoop, Tuple[grpc.aio.Channel, Any]] = {}

    async def model_info(
        self, request: Mapping[str, Any], signal: Optional[asyncio.Event] = None
    ) -> Dict[str, Any]:
        return await self._unary("ModelInfo", "ModelInfoRequest", request, signal)

    async def tokenize(
        self, request: Mapping[str, Any], signal: Optional[asyncio.Event] = None
    ) -> Dict[str, Any]:
        return await self._unary("Tokenize", "BatchedTokenizeRequest", request, signal)

    async def generate(
        self, request: Mapping[str, Any], signal: Optional[asyncio.Event] = None
    ) -> Dict[str, Any]:
        return await self._unary("Generate", "BatchedGenerationRequest", request, signal)

    async def generate_stream(
        self, request: Mapping[str, Any], signal: Optional[asyncio.Event] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield GenerationResponse dicts as the server streams them."""
        if signal is not None and signal.is_set():
            raise AbortError()
        call = self._stub().GenerateStream(self._to_message("SingleGenerationRequest", request))
        watcher = _watch_signal(call, signal)
        try:
            async for response in call:
                yield self._to_dict(response)
        except asyncio.CancelledError:
            if signal is not None and signal.is_set():
                raise AbortError() from None
            raise
        finally:
            if watcher is not None:
                watcher.cancel()
            call.cancel()

    async def close(self) -> None:
        """Close the channel opened on the running loop.

        A later call on the same loop opens a new channel.
        """
        binding = self._bindings.pop(asyncio.get_running_loop(), None)
        if binding is not None:
            await binding[0].close()

    def _stub(self) -> Any:
        loop = asyncio.get_running_loop()
        binding = self._bindings.get(loop)
        if binding is None:
            for stale in [known for known in self._bindings if known.is_closed()]:
                del self._bindings[stale]
            channel = self._channel_factory()
            binding = (channel, self._services.GenerationServiceStub(channel))
            self._bindings[loop] = binding
            logger.debug("Opened generation service channel (%d active)", len(self._bindings))
        return binding[1]

    async def _unary(
        self,
        method_name: str,
        message_name: str,
        request: Mapping[str, Any],
        signal: Optional[asyncio.Event],
    ) -> Dict[str, Any]:
        if signal is not None and signal.is_set():
            raise AbortError()
        method = getattr(self._stub(), method_name)
        call = method(self._to_message(message_name, request))
        watcher = _watch_signal(call, signal)
        try:
            response = await call
        except asyncio.CancelledError:
            if signal is not None and signal.is_set():
                raise AbortError() from None
            raise
        finally:
            if watcher is not None:
                watcher.cancel()
        return self._to_dict(response)

    def _to_message(self, message_name: str, request: Mapping[str, Any]) -> Any:
        message_cls = getattr(self._protos, message_name)
        return json_format.ParseDict(_encode_json_schema(request), message_cls())

    @staticmethod
    def _to_dict(message: Any) -> Dict[str, Any]:
        return json_format.MessageToDict(
            message,
            preserving_proto_field_name=True,
            always_print_fields_with_no_presence=True,
        )


def _encode_json_schema(request: Mapping[str, Any]) -> Dict[str, Any]:
    """Serialize a structured params.decoding.json_schema to JSON text.

    The wire field is a string; callers may hold the schema as parsed data.
    """
    params = request.get("params")
    decoding = (params or {}).get("decoding") or {}
    schema = decoding.get("json_schema")
    if schema is None or isinstance(schema, str):
        return dict(request)
    return {
        **request,
        "params": {**params, "decoding": {**decoding, "json_schema": json.dumps(schema)}},
    }


_clients: Dict[str, GrpcGenerationClient] = {}


def build_client(config: Optional[ClientConfig] = None) -> GrpcGenerationClient:
    """Get or create a shared client for ``config`` (default: from env).

    Shared clients are closed with ``close_clients``, not by the adapters
    that use them.
    """
    config = config or ClientConfig.from_env()
    key = config.cache_key()
    if key in _clients:
        return _clients[key]

    client = GrpcGenerationClient(functools.partial(create_channel, config))
    _clients[key] = client
    logger.info("Created generation service client for %s", config.url)
    return client


async def close_clients() -> None:
    """Close the shared clients' channels on the running loop and forget them."""
    clients = list(_clients.values())
    _clients.clear()
    for client in clients:
        await client.close()
    logger.info("Closed %d generation service client(s)", len(clients))
