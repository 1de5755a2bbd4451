from __future__ import annotations

import pytest
from fake_chain import BRIDGE, PRIVATE_KEY, ROUTER, WAVAX, FakeChain

from dexflow.client import DexClient
from dexflow.config import ClientConfig, EngineConfig

DESTINATION_CHAIN_ID = 43114


def make_config(**engine_overrides) -> ClientConfig:
    engine = {
        "confirmations": 1,
        "poll_interval": 0.001,
        "receipt_timeout": 2.0,
        "drop_after_blocks": 3,
    }
    engine.update(engine_overrides)
    return ClientConfig(
        private_key=PRIVATE_KEY,
        rpc_url="http://fake-rpc",
        router_address=ROUTER,
        wrapped_native_address=WAVAX,
        bridge_address=BRIDGE,
        bridge_destination_chain_id=DESTINATION_CHAIN_ID,
        engine=EngineConfig(**engine),
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def config() -> ClientConfig:
    return make_config()


@pytest.fixture
def client(chain: FakeChain, config: ClientConfig) -> DexClient:
    return DexClient(config, endpoint=chain)  # type: ignore[arg-type]
