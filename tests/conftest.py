import pytest

from _graph_utils import build_rnn


@pytest.fixture
def rnn():
    """A small recurrent network that has not been built yet (T=4, S=2)."""
    return build_rnn()
