import pytest

import threadloop as tl


@pytest.fixture
def store():
    return tl.agent.InMemoryMessageStore()


@pytest.fixture
def scratchpad():
    return tl.agent.InMemoryScratchpad()


@pytest.fixture
def usage_records():
    return []
