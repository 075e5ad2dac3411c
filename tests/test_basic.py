"""Basic import, instantiation and configuration tests."""

import pytest

import runbatch
from runbatch import QueueConfig, QueueState


def test_import():
    """Verify runbatch can be imported and has BatchQueue class."""
    assert hasattr(runbatch, "BatchQueue")
    assert runbatch.__version__


def test_queue_instantiation_defaults():
    """BatchQueue defaults to 4-wide batches, no delay, 5s re-check interval."""
    queue = runbatch.BatchQueue()

    assert queue.config == QueueConfig(concurrency=4, delay=0.0, interval=5.0)
    assert queue.state == QueueState.IDLE
    assert queue.pending == 0
    assert len(queue) == 0
    assert queue.results == []
    assert not queue.busy


def test_queue_options():
    """Keyword options end up in the queue config."""
    queue = runbatch.BatchQueue(concurrency=2, delay=0.5, interval=1)

    assert queue.config.concurrency == 2
    assert queue.config.delay == 0.5
    assert queue.config.interval == 1


def test_config_object_overrides_options():
    """An explicit QueueConfig wins over keyword options."""
    config = QueueConfig(concurrency=7)
    queue = runbatch.BatchQueue(concurrency=2, config=config)

    assert queue.config is config
    assert queue.config.concurrency == 7


class TestConfigValidation:
    """Invalid configuration is rejected up front."""

    @pytest.mark.parametrize("concurrency", [0, -1, 2.5, True, "4"])
    def test_bad_concurrency(self, concurrency):
        with pytest.raises(ValueError, match="concurrency"):
            QueueConfig(concurrency=concurrency)

    def test_negative_delay(self):
        with pytest.raises(ValueError, match="delay"):
            runbatch.BatchQueue(delay=-1)

    def test_negative_interval(self):
        with pytest.raises(ValueError, match="interval"):
            runbatch.BatchQueue(interval=-0.1)

    def test_zero_delay_and_interval_allowed(self):
        config = QueueConfig(delay=0, interval=0)
        assert config.delay == 0
        assert config.interval == 0

    def test_config_is_immutable(self):
        config = QueueConfig()
        with pytest.raises(AttributeError):
            config.concurrency = 10
