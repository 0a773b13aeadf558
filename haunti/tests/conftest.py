import asyncio

import pytest

from zk.artifacts import ArtifactCache
from zk.engine import ProofEngine
from zk.tests import SAMPLE_INPUTS, deploy


@pytest.fixture(scope="session")
def inference_proof(setups):
    """An honest inference proof, shared by every settlement test."""

    async def run():
        registry, store = deploy([setups["inference"]])
        engine = ProofEngine(registry, ArtifactCache(registry, store))
        return await engine.prove("inference", SAMPLE_INPUTS["inference"])

    return asyncio.run(run())
